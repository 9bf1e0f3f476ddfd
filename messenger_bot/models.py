from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class IntentReply(BaseModel):
    """Structured FAQ reply; image and gallery are explicitly optional."""
    model_config = ConfigDict(frozen=True)

    title: str = ""
    description: str = ""
    highlights: Tuple[str, ...] = ()
    image: Optional[str] = None
    gallery: Tuple[str, ...] = ()


class IntentRecord(BaseModel):
    """Predefined topic with trigger phrases and a canned reply payload."""
    model_config = ConfigDict(frozen=True)

    trigger: str
    keywords: Tuple[str, ...] = ()
    examples: Tuple[str, ...] = ()
    reply: IntentReply = Field(default_factory=IntentReply)


class CatalogItem(BaseModel):
    """Product catalog entry used for keyword ranking and catalog summaries."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    tags: Tuple[str, ...] = ()
    benefits: Tuple[str, ...] = ()
    ingredients: Tuple[str, ...] = ()
    price: Optional[str] = None
    size: Optional[str] = None
    url: Optional[str] = None
    image: Optional[str] = None
    notes: str = ""


class HistoryTurn(BaseModel):
    """One message kept in the rolling per-user history."""
    role: Literal["user", "assistant"]
    content: str


class ReplyPart(BaseModel):
    """Unit of outbound work for the delivery boundary."""
    kind: Literal["text", "image_url"]
    content: str


class WebhookSender(BaseModel):
    id: str


class WebhookMessage(BaseModel):
    mid: Optional[str] = None
    text: Optional[str] = None
    is_echo: bool = False


class WebhookEvent(BaseModel):
    """Single messaging event from a webhook entry."""
    sender: WebhookSender
    recipient: Optional[Dict[str, Any]] = None
    timestamp: Optional[int] = None
    message: Optional[WebhookMessage] = None


class WebhookEntry(BaseModel):
    id: Optional[str] = None
    time: Optional[int] = None
    messaging: List[WebhookEvent] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    """Request payload delivered by the messaging platform."""
    object: str
    entry: List[WebhookEntry] = Field(default_factory=list)


class ChatRequest(BaseModel):
    """Request payload for the direct chat API."""
    user_id: str
    message: str


class ChatResponse(BaseModel):
    """Response payload returned by the direct chat API."""
    route: str
    answer_text: str
    parts: List[ReplyPart]
    thinking_logs: List[Dict[str, str]]
    user_id: str
