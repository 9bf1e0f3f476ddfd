from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Optional

from dotenv import load_dotenv
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.responses import PlainTextResponse

from .agent_pipeline import HairCareAgent, RouterConfig
from .config import load_settings
from .delivery import MessengerSender
from .errors import BotError
from .gemini_client import GeminiClient
from .knowledge.knowledge_store import KnowledgeStore
from .models import ChatRequest, ChatResponse, WebhookPayload
from .resource_loader import ResourceLoader, load_or_empty
from .session_store import InMemorySessionStore, run_sweeper
from .utils import mask_user_id

BASE_DIR = Path(__file__).resolve().parent

ENV_PATH = BASE_DIR / ".env"
if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=True)
else:
    load_dotenv()

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()
log_level = getattr(logging, log_level_name, logging.INFO)
if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logging.getLogger("messenger_bot").setLevel(log_level)
logger = logging.getLogger("messenger_bot.app")

settings = load_settings()
resource_loader = ResourceLoader(settings.intents_path, settings.products_path)
intents = load_or_empty(resource_loader.load_intents, "intents")
products = load_or_empty(resource_loader.load_products, "products")
knowledge = KnowledgeStore.load(settings.kb_index_path)
session_store = InMemorySessionStore(
    ttl_sec=settings.session_ttl_sec,
    max_history=settings.max_history_turns,
    max_ask_count=settings.max_ask_count,
)

gemini = GeminiClient(settings)
agent = HairCareAgent(
    llm=gemini,
    session_store=session_store,
    intents=intents,
    catalog=products,
    knowledge=knowledge,
    prompts_dir=settings.prompts_dir,
    config=RouterConfig.from_settings(settings),
)
sender = MessengerSender(settings)


@asynccontextmanager
async def lifespan(_: FastAPI):
    sweeper = asyncio.create_task(run_sweeper(session_store, settings.session_sweep_sec))
    try:
        yield
    finally:
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass
        await sender.aclose()


app = FastAPI(title="SmartKidz Messenger Assistant", lifespan=lifespan)


async def process_event(sender_id: str, text: str) -> None:
    """Purpose: Answer one inbound text event and deliver the reply.
    Inputs/Outputs: Inputs are the sender id and message text; no return value.
    Side Effects / State: Runs a router turn and posts to the Send API.
    Dependencies: HairCareAgent.handle_message, MessengerSender.send_parts.
    Failure Modes: Delivery errors are logged; nothing propagates to the webhook.
    If Removed: Webhook events are acknowledged but never answered.
    Testing Notes: Patch agent/sender with fakes and await directly.
    """
    reply = await agent.handle_message(sender_id, text)
    try:
        await sender.send_parts(sender_id, reply.parts)
    except BotError as exc:
        logger.error("user=%s deliver status=failed error=%s", mask_user_id(sender_id), exc)


@app.get("/webhook", response_class=PlainTextResponse)
def verify_webhook(
    mode: Optional[str] = Query(default=None, alias="hub.mode"),
    token: Optional[str] = Query(default=None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(default=None, alias="hub.challenge"),
) -> str:
    """Purpose: Complete the platform's subscription handshake.
    Inputs/Outputs: Query params hub.mode/hub.verify_token/hub.challenge; returns the
        challenge as plain text or 403.
    Side Effects / State: None.
    Dependencies: VERIFY_TOKEN setting.
    Failure Modes: Missing or wrong token -> 403.
    If Removed: The platform cannot subscribe the webhook.
    Testing Notes: Use TestClient with a matching token and expect the challenge.
    """
    if mode == "subscribe" and token and settings.verify_token and token == settings.verify_token:
        logger.info("webhook verified")
        return challenge or ""
    raise HTTPException(status_code=403, detail="verification failed")


@app.post("/webhook", response_class=PlainTextResponse)
async def receive_webhook(payload: WebhookPayload, background_tasks: BackgroundTasks) -> str:
    """Purpose: Accept webhook events and schedule a reply for each text message.
    Inputs/Outputs: Input is WebhookPayload; returns EVENT_RECEIVED immediately.
    Side Effects / State: Schedules process_event per text event.
    Dependencies: FastAPI BackgroundTasks.
    Failure Modes: Non-page objects -> 404; echoes and non-text events are ignored.
    If Removed: The platform retries deliveries and the bot stays silent.
    Testing Notes: Post a page payload and assert the scheduled sender ids.
    """
    if payload.object != "page":
        raise HTTPException(status_code=404, detail="unsupported object")
    scheduled = 0
    for entry in payload.entry:
        for event in entry.messaging:
            message = event.message
            if message is None or message.is_echo or not (message.text or "").strip():
                continue
            background_tasks.add_task(process_event, event.sender.id, message.text)
            scheduled += 1
    logger.info("webhook events=%s", scheduled)
    return "EVENT_RECEIVED"


@app.post("/api/chat", response_model=ChatResponse)
async def chat(request: ChatRequest) -> ChatResponse:
    """Run one router turn without delivery, for local testing and tools."""
    reply = await agent.handle_message(request.user_id, request.message)
    return ChatResponse(
        route=reply.route.value,
        answer_text=reply.answer_text,
        parts=reply.parts,
        thinking_logs=reply.thinking_logs,
        user_id=request.user_id,
    )


@app.get("/health")
def health() -> Dict[str, object]:
    return {
        "status": "ok",
        "intents": len(intents),
        "products": len(products),
        "kb_records": len(knowledge),
        "sessions": len(session_store),
        "model_configured": gemini.configured,
    }
