from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .errors import ConfigurationMissing, UnsupportedRequestShape
from .prompt_composer import SHAPE_FLATTENED, ModelRequest

logger = logging.getLogger("messenger_bot.fallback")

APOLOGY = {
    "ar": "آسفين جدًا، حصلت مشكلة بسيطة عندنا 🙏 ممكن تبعتي رسالتك تاني بعد شوية؟",
    "en": "Sorry, something went wrong on our side 🙏 Could you send your message again in a moment?",
}
LIMITED_SERVICE = {
    "ar": "الخدمة محدودة مؤقتًا دلوقتي 🙏 ممكن تسألي عن العروض أو السلامة أو أماكن البيع وهنرد عليكي فورًا.",
    "en": "Our assistant is temporarily limited 🙏 You can still ask about offers, safety, or where to buy.",
}

Generate = Callable[[ModelRequest], Awaitable[str]]


@dataclass
class FallbackResult:
    text: str
    ok: bool
    attempts: int
    error: str = ""


def apology_for(language: str) -> str:
    return APOLOGY.get(language, APOLOGY["en"])


def limited_service_for(language: str) -> str:
    return LIMITED_SERVICE.get(language, LIMITED_SERVICE["en"])


class FallbackChain:
    """Primary call, one alternate-shape retry on shape mismatch, then apology."""

    def __init__(self, generate: Generate) -> None:
        self._generate = generate

    async def run(self, request: ModelRequest, language: str = "ar", user_tag: str = "") -> FallbackResult:
        """Purpose: Execute a model request with the fixed fallback policy.
        Inputs/Outputs: Inputs are the composed request, the user's language family,
            and a masked user tag for logs; output is a FallbackResult.
        Side Effects / State: Calls the model capability at most twice; logs failures.
        Dependencies: A generate coroutine raising TransientError,
            UnsupportedRequestShape, or ConfigurationMissing.
        Failure Modes: Never raises; every failure ends in a canned reply.
        If Removed: Raw SDK errors would reach the router and the user.
        Testing Notes: Shape error then success -> two attempts, ok; transient
            error -> one attempt, apology; empty answer -> apology.
        """
        attempts = 0
        current: Optional[ModelRequest] = request
        while current is not None:
            attempts += 1
            try:
                text = await self._generate(current)
            except UnsupportedRequestShape as exc:
                logger.warning(
                    "user=%s model=%s shape=%s status=unsupported_shape error=%s",
                    user_tag,
                    current.model,
                    current.shape,
                    exc,
                )
                if current.shape != SHAPE_FLATTENED:
                    current = current.flattened()
                    continue
                return FallbackResult(apology_for(language), ok=False, attempts=attempts, error="unsupported_shape")
            except ConfigurationMissing as exc:
                logger.error("user=%s status=config_missing error=%s", user_tag, exc)
                return FallbackResult(limited_service_for(language), ok=False, attempts=attempts, error="config")
            except Exception as exc:
                logger.warning(
                    "user=%s model=%s shape=%s status=failed error=%s: %s",
                    user_tag,
                    current.model,
                    current.shape,
                    exc.__class__.__name__,
                    exc,
                )
                return FallbackResult(apology_for(language), ok=False, attempts=attempts, error=exc.__class__.__name__)
            if not text.strip():
                logger.warning("user=%s model=%s status=empty_answer", user_tag, current.model)
                return FallbackResult(apology_for(language), ok=False, attempts=attempts, error="empty")
            return FallbackResult(text.strip(), ok=True, attempts=attempts)
        return FallbackResult(apology_for(language), ok=False, attempts=attempts, error="exhausted")
