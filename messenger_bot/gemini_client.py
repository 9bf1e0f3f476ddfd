from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from .config import Settings
from .errors import ConfigurationMissing, TransientError, UnsupportedRequestShape
from .prompt_composer import ModelRequest

logger = logging.getLogger("messenger_bot.gemini")

TRANSIENT_EXCEPTIONS = (
    google_exceptions.ResourceExhausted,
    google_exceptions.TooManyRequests,
    google_exceptions.ServiceUnavailable,
    google_exceptions.DeadlineExceeded,
    google_exceptions.InternalServerError,
    google_exceptions.BadGateway,
    google_exceptions.GatewayTimeout,
    asyncio.TimeoutError,
    ConnectionError,
)
SHAPE_ERROR_MARKERS = (
    "system_instruction",
    "system instruction",
    "developer instruction",
    "systeminstruction",
)

DEFAULT_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_MEDIUM_AND_ABOVE"},
]


def classify_error(exc: BaseException) -> Exception:
    """Purpose: Map SDK/transport exceptions onto the pipeline error taxonomy.
    Inputs/Outputs: Input is any exception; output is TransientError,
        UnsupportedRequestShape, or the original exception when unknown.
    Side Effects / State: None.
    Dependencies: google.api_core exception classes.
    Failure Modes: Unknown exceptions are returned unchanged so callers can log them.
    If Removed: The fallback chain cannot tell a shape mismatch from an outage.
    Testing Notes: TypeError mentioning system_instruction -> UnsupportedRequestShape;
        ResourceExhausted -> TransientError.
    """
    if isinstance(exc, (TransientError, UnsupportedRequestShape, ConfigurationMissing)):
        return exc
    message = str(exc).lower()
    if isinstance(exc, (TypeError, google_exceptions.InvalidArgument)) and any(
        marker in message for marker in SHAPE_ERROR_MARKERS
    ):
        return UnsupportedRequestShape(str(exc) or exc.__class__.__name__)
    if isinstance(exc, TRANSIENT_EXCEPTIONS):
        return TransientError(str(exc) or exc.__class__.__name__)
    return exc


class GeminiClient:
    """Thin async wrapper around the Gemini SDK with model caching."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Configure the Gemini SDK and initialize the model cache.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Configures the SDK API key when present.
        Dependencies: Uses google.generativeai and Settings from config.
        Failure Modes: A missing key does not raise here; every call raises
            ConfigurationMissing so the router can answer in degraded mode.
        If Removed: Model-backed routes and KB query embeddings are unavailable.
        Testing Notes: Without GEMINI_API_KEY, generate() raises ConfigurationMissing.
        """
        self._settings = settings
        self._models: Dict[str, genai.GenerativeModel] = {}
        self.configured = bool(settings.gemini_api_key)
        if self.configured:
            genai.configure(api_key=settings.gemini_api_key)
        else:
            logger.error("GEMINI_API_KEY is not set; model calls run in degraded mode")

    def _model(self, name: str, system_instruction: Optional[str]) -> genai.GenerativeModel:
        key = f"{name}::{hash(system_instruction)}"
        model = self._models.get(key)
        if model is None:
            if system_instruction:
                model = genai.GenerativeModel(name, system_instruction=system_instruction)
            else:
                model = genai.GenerativeModel(name)
            if len(self._models) > 32:
                self._models.clear()
            self._models[key] = model
        return model

    async def generate(self, request: ModelRequest) -> str:
        """Purpose: Run one completion for a composed request.
        Inputs/Outputs: Input is a ModelRequest; output is the stripped answer text.
        Side Effects / State: May add a model instance to the cache.
        Dependencies: GenerativeModel.generate_content_async with a bounded timeout.
        Failure Modes: Raises ConfigurationMissing, TransientError (including
            timeouts), or UnsupportedRequestShape; other errors propagate unchanged.
        If Removed: DOMAIN_QUERY, GENERIC, and SMALL_TALK routes cannot answer.
        Testing Notes: Use a fake client in router tests; this class is exercised
            only through classify_error in unit tests.
        """
        if not self.configured:
            raise ConfigurationMissing("GEMINI_API_KEY is required")
        model_name = _normalize_model_name(request.model) or self._settings.gemini_model
        generation_config = {"max_output_tokens": request.max_output_tokens}
        if request.temperature is not None:
            generation_config["temperature"] = request.temperature
        try:
            model = self._model(model_name, request.system_instruction)
            response = await asyncio.wait_for(
                model.generate_content_async(
                    request.contents,
                    generation_config=generation_config,
                    safety_settings=DEFAULT_SAFETY_SETTINGS,
                ),
                timeout=self._settings.model_timeout_sec,
            )
        except Exception as exc:
            raise classify_error(exc) from exc
        text: Optional[str]
        try:
            text = response.text
        except ValueError:
            # Blocked or empty candidates raise on .text.
            text = None
        return (text or "").strip()

    async def embed(self, text: str, task_type: str = "retrieval_query") -> List[float]:
        """Embed one text (queries by default); raises TransientError on failure or timeout."""
        if not self.configured:
            raise ConfigurationMissing("GEMINI_API_KEY is required")
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(
                    genai.embed_content,
                    model=self._settings.gemini_embed_model,
                    content=text,
                    task_type=task_type,
                ),
                timeout=self._settings.embed_timeout_sec,
            )
        except Exception as exc:
            error = classify_error(exc)
            if isinstance(error, (TransientError, ConfigurationMissing)):
                raise error from exc
            raise TransientError(f"embedding failed: {exc}") from exc
        embedding = result.get("embedding") if isinstance(result, dict) else None
        if not isinstance(embedding, list):
            raise TransientError("embedding response had no vector")
        return [float(value) for value in embedding]


def _normalize_model_name(name: Optional[str]) -> str:
    """Strip a leading "models/" prefix and whitespace from a model name."""
    if not name:
        return ""
    cleaned = name.strip()
    if cleaned.startswith("models/"):
        return cleaned.split("/", 1)[1]
    return cleaned
