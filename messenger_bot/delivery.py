from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

import httpx

from .config import Settings
from .errors import ConfigurationMissing, TransientError
from .models import ReplyPart
from .utils import mask_user_id

logger = logging.getLogger("messenger_bot.delivery")

GRAPH_API_BASE = "https://graph.facebook.com"
MAX_TEXT_CHARS = 2000


def split_text(text: str, limit: int = MAX_TEXT_CHARS) -> List[str]:
    """Purpose: Split a reply into Send API sized chunks.
    Inputs/Outputs: Input is the reply text and a character limit; output is a list
        of non-empty chunks, each at most `limit` characters.
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: A single word longer than the limit is hard-split.
    If Removed: Long model answers are rejected by the platform.
    Testing Notes: Paragraph breaks are preferred over mid-line cuts.
    """
    text = (text or "").strip()
    if not text:
        return []
    chunks: List[str] = []
    while len(text) > limit:
        cut = text.rfind("\n", 0, limit)
        if cut <= 0:
            cut = text.rfind(" ", 0, limit)
        if cut <= 0:
            cut = limit
        chunks.append(text[:cut].rstrip())
        text = text[cut:].lstrip()
    if text:
        chunks.append(text)
    return chunks


def build_messages(recipient_id: str, parts: Sequence[ReplyPart]) -> List[Dict[str, object]]:
    """Send API payloads for reply parts, in order."""
    payloads: List[Dict[str, object]] = []
    for part in parts:
        if part.kind == "text":
            for chunk in split_text(part.content):
                payloads.append({"recipient": {"id": recipient_id}, "message": {"text": chunk}})
        elif part.kind == "image_url" and part.content:
            payloads.append(
                {
                    "recipient": {"id": recipient_id},
                    "message": {
                        "attachment": {
                            "type": "image",
                            "payload": {"url": part.content, "is_reusable": True},
                        }
                    },
                }
            )
    return payloads


class MessengerSender:
    """Async Send API client for reply parts."""

    def __init__(
        self,
        settings: Settings,
        client: Optional[httpx.AsyncClient] = None,
        delay_sec: Optional[float] = None,
    ) -> None:
        self._token = settings.page_access_token
        self._url = f"{GRAPH_API_BASE}/{settings.graph_api_version}/me/messages"
        self._delay_sec = settings.delivery_delay_sec if delay_sec is None else delay_sec
        self._client = client or httpx.AsyncClient(timeout=15.0)
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def send_parts(self, recipient_id: str, parts: Sequence[ReplyPart]) -> int:
        """Purpose: Deliver reply parts to one recipient in order.
        Inputs/Outputs: Inputs are the platform user id and reply parts; output is the
            number of messages accepted by the platform.
        Side Effects / State: HTTP POSTs to the Send API, paced by delay_sec between
            messages so media does not overtake text.
        Dependencies: httpx.AsyncClient, PAGE_ACCESS_TOKEN.
        Failure Modes: Raises ConfigurationMissing without a page token and
            TransientError on network errors or non-2xx responses; messages already
            sent stay sent.
        If Removed: Replies are computed but never reach the user.
        Testing Notes: Use httpx.MockTransport to capture payloads.
        """
        if not self._token:
            raise ConfigurationMissing("PAGE_ACCESS_TOKEN is not set")
        payloads = build_messages(recipient_id, parts)
        sent = 0
        for index, payload in enumerate(payloads):
            if index and self._delay_sec > 0:
                await asyncio.sleep(self._delay_sec)
            try:
                response = await self._client.post(
                    self._url,
                    params={"access_token": self._token},
                    json=payload,
                )
            except httpx.HTTPError as exc:
                logger.warning("user=%s send status=network_error error=%s", mask_user_id(recipient_id), exc)
                raise TransientError(f"send failed: {exc}") from exc
            if response.status_code >= 400:
                logger.error(
                    "user=%s send status=%s body=%s",
                    mask_user_id(recipient_id),
                    response.status_code,
                    response.text[:300],
                )
                raise TransientError(f"send failed with HTTP {response.status_code}")
            sent += 1
        logger.info("user=%s send status=ok messages=%s", mask_user_id(recipient_id), sent)
        return sent
