"""Retrieval-and-routing pipeline for the Messenger hair-care assistant.

Role:
    Decides, per incoming message, whether to answer from small talk, the FAQ
    intent table, knowledge-base + catalog grounded generation, or a plain persona
    model call, and keeps per-user slot memory for multi-turn advice.

Route priority (fixed, evaluated top to bottom):
    SMALL_TALK:   short greeting/thanks/farewell/how-are-you messages. A short
                  greeting that also contains an FAQ keyword still routes here.
    FAQ_MATCH:    confident intent match; the stored payload is rendered verbatim.
    DOMAIN_QUERY: hair/skin vocabulary hit; KB + catalog context, slot filling,
                  at most one clarifying question per turn.
    GENERIC:      everything else.

Step contracts:
    Classify:   Sets route, match, and language on the context.
    Retrieval:  DOMAIN_QUERY only; fills kb_hits and catalog_items (empty on error).
    Slot Policy: DOMAIN_QUERY only; merges slots and picks the pending question.
    Generation: Produces answer_text and reply parts.
    Finalize:   Always runs; guarantees an answer and appends history.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from .adk_runtime import AdkAgent, AdkStep
from .catalog_ranker import rank as rank_catalog
from .catalog_ranker import summarize as summarize_catalog
from .config import Settings
from .errors import ConfigurationMissing, TransientError
from .fallback_chain import FallbackChain, apology_for
from .intent_matcher import NO_MATCH, IntentMatcher, MatchResult
from .knowledge.knowledge_store import KnowledgeStore, RetrievalHit, format_hits
from .models import CatalogItem, IntentRecord, ReplyPart
from .prompt_composer import ContextBlock, ModelRequest, compose
from .prompt_loader import load_prompt, render_prompt
from .session_store import SessionState, SessionStore
from .slots import extract_slots
from .utils import contains_any, detect_language, mask_user_id, normalize_text, prepare_embedding_text, tokenize
from .vocabulary import CLARIFYING_QUESTIONS, DOMAIN_TERMS, SMALL_TALK_TERMS

logger = logging.getLogger("messenger_bot.router")

MAX_PRACTICAL_STEPS = 3
PROMOTION_TRIGGERS = {"offer", "offers", "promotion"}

DEFAULT_PERSONA = (
    "You are the friendly customer-care assistant of a children's hair and skin care brand. "
    "Reply briefly in the customer's language and never invent product facts."
)
SMALL_TALK_FALLBACK = {
    "ar": "أهلاً بيكي 🌸 أقدر أساعدك إزاي في شعر أو بشرة طفلك؟",
    "en": "Hi there 🌸 How can I help with your child's hair or skin today?",
}
NO_QUESTION_RULE = "Do not ask the customer any question in this reply."
ASK_QUESTION_RULE = 'End your reply with exactly this one question and no other question: "<<QUESTION>>"'


class Route(str, Enum):
    SMALL_TALK = "SMALL_TALK"
    FAQ_MATCH = "FAQ_MATCH"
    DOMAIN_QUERY = "DOMAIN_QUERY"
    GENERIC = "GENERIC"


class LanguageModel(Protocol):
    async def generate(self, request: ModelRequest) -> str: ...

    async def embed(self, text: str) -> List[float]: ...


@dataclass(frozen=True)
class RouterConfig:
    """Tunable routing thresholds and limits."""
    model_name: str = "gemini-2.5-flash"
    max_output_tokens: int = 600
    intent_match_threshold: float = 0.32
    intent_require_keyword: bool = False
    small_talk_max_chars: int = 40
    kb_top_k: int = 4
    kb_min_similarity: float = 0.35
    catalog_top_n: int = 3
    ask_cooldown_sec: float = 60.0
    max_context_chars: int = 0

    @classmethod
    def from_settings(cls, settings: Settings) -> "RouterConfig":
        return cls(
            model_name=settings.gemini_model,
            max_output_tokens=settings.max_output_tokens,
            intent_match_threshold=settings.intent_match_threshold,
            intent_require_keyword=settings.intent_require_keyword,
            small_talk_max_chars=settings.small_talk_max_chars,
            kb_top_k=settings.kb_top_k,
            kb_min_similarity=settings.kb_min_similarity,
            catalog_top_n=settings.catalog_top_n,
            ask_cooldown_sec=settings.ask_cooldown_sec,
            max_context_chars=settings.max_context_chars,
        )


@dataclass
class PipelineContext:
    """Mutable context passed through each router step."""
    user_id: str
    user_message: str
    normalized: str
    language: str
    session: SessionState
    now: float
    route: Route = Route.GENERIC
    match: MatchResult = NO_MATCH
    kb_hits: List[RetrievalHit] = field(default_factory=list)
    catalog_items: List[CatalogItem] = field(default_factory=list)
    filled_slots: List[str] = field(default_factory=list)
    asked_slot: Optional[str] = None
    question_text: str = ""
    request: Optional[ModelRequest] = None
    answer_text: str = ""
    parts: List[ReplyPart] = field(default_factory=list)
    degraded: bool = False
    errors: List[str] = field(default_factory=list)
    thinking_logs: List[Dict[str, str]] = field(default_factory=list)

    @property
    def user_tag(self) -> str:
        return mask_user_id(self.user_id)

    def log(self, event: str, detail: str, status: str = "success") -> None:
        """Append a structured step entry for the chat API and debugging."""
        self.thinking_logs.append({"event": event, "step": event, "detail": detail, "status": status})

    def on_step_error(self, step: str, exc: Exception) -> None:
        self.errors.append(step)
        self.degraded = True
        self.log(step, f"{exc.__class__.__name__}: {exc}", status="error")


@dataclass
class RouterReply:
    """Outcome of one turn, handed to the delivery boundary."""
    user_id: str
    route: Route
    answer_text: str
    parts: List[ReplyPart]
    asked_slot: Optional[str] = None
    match_score: float = 1.0
    degraded: bool = False
    thinking_logs: List[Dict[str, str]] = field(default_factory=list)


class HairCareAgent:
    def __init__(
        self,
        llm: LanguageModel,
        session_store: SessionStore,
        intents: Sequence[IntentRecord],
        catalog: Sequence[CatalogItem],
        knowledge: KnowledgeStore,
        prompts_dir: Path,
        config: Optional[RouterConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Purpose: Wire the router to its collaborators and build the step runner.
        Inputs/Outputs: Inputs are the model capability, session store, immutable
            intent/catalog tuples, KB index, prompt directory, config, and a clock;
            no return value.
        Side Effects / State: Constructs an AdkAgent with ordered steps.
        Dependencies: IntentMatcher, KnowledgeStore, catalog ranker, FallbackChain.
        Failure Modes: None at init; step errors are isolated at run time.
        If Removed: The webhook has no way to turn a message into a reply.
        Testing Notes: Instantiate with a fake LanguageModel and InMemorySessionStore.
        """
        self._llm = llm
        self._sessions = session_store
        self._intents = tuple(intents)
        self._catalog = tuple(catalog)
        self._knowledge = knowledge
        self._prompts_dir = prompts_dir
        self._config = config or RouterConfig()
        self._clock = clock
        self._matcher = IntentMatcher(
            threshold=self._config.intent_match_threshold,
            require_keyword_hit=self._config.intent_require_keyword,
        )
        self._fallback = FallbackChain(llm.generate)
        self._agent = AdkAgent(
            steps=[
                AdkStep("classify", self._step_classify),
                AdkStep("retrieval", self._step_retrieval, skip_if=_not_domain),
                AdkStep("slot_policy", self._step_slot_policy, skip_if=_not_domain),
                AdkStep("generation", self._step_generation),
                AdkStep("finalize", self._step_finalize, always_run=True),
            ]
        )

    async def handle_message(self, user_id: str, user_message: str) -> RouterReply:
        """Purpose: Run one turn for a user while holding that user's session lock.
        Inputs/Outputs: Inputs are the platform user id and raw message text; output
            is a RouterReply with route, answer text, and ordered reply parts.
        Side Effects / State: Mutates the user's session (slots, ask budget, history).
        Dependencies: SessionStore.session for per-user serialization; AdkAgent.run.
        Failure Modes: Never raises for pipeline errors; degraded turns still return
            a polite reply in the user's language.
        If Removed: Incoming webhook events cannot be answered.
        Testing Notes: Drive multi-turn scenarios with one user id and a fake model.
        """
        async with self._sessions.session(user_id) as session:
            context = PipelineContext(
                user_id=user_id,
                user_message=user_message,
                normalized=normalize_text(user_message),
                language=detect_language(user_message),
                session=session,
                now=self._clock(),
            )
            logger.info("user=%s question=%s", context.user_tag, user_message)
            await self._agent.run(context)
        return RouterReply(
            user_id=user_id,
            route=context.route,
            answer_text=context.answer_text,
            parts=context.parts,
            asked_slot=context.asked_slot,
            match_score=context.match.score,
            degraded=context.degraded,
            thinking_logs=context.thinking_logs,
        )

    async def _step_classify(self, context: PipelineContext) -> None:
        """Purpose: Pick the route for this turn in fixed priority order.
        Inputs/Outputs: Input is PipelineContext; sets route and match.
        Side Effects / State: Logs the decision.
        Dependencies: is_small_talk, IntentMatcher.match, is_domain_query.
        Failure Modes: An intent-matcher error counts as no match and routing
            continues with domain detection.
        If Removed: Every message would fall through to the generic model call.
        Testing Notes: "هاي، في عروض؟" is SMALL_TALK even though "عروض" is an FAQ keyword.
        """
        if is_small_talk(context.normalized, self._config.small_talk_max_chars):
            context.route = Route.SMALL_TALK
            context.log("classify", "small talk")
            logger.info("user=%s route=%s", context.user_tag, context.route.value)
            return

        try:
            context.match = self._matcher.match(context.normalized, self._intents)
        except Exception as exc:
            logger.warning("user=%s intent match failed: %s", context.user_tag, exc)
            context.on_step_error("intent_match", exc)
            context.match = NO_MATCH
        if context.match.confident and context.match.record is not None:
            context.route = Route.FAQ_MATCH
        elif is_domain_query(context.normalized):
            context.route = Route.DOMAIN_QUERY
        else:
            context.route = Route.GENERIC

        trigger = context.match.record.trigger if context.match.record else ""
        context.log("classify", f"route={context.route.value} intent={trigger} score={context.match.score:.3f}")
        logger.info(
            "user=%s route=%s intent=%s score=%.3f keyword_hit=%s field=%s",
            context.user_tag,
            context.route.value,
            trigger,
            context.match.score,
            context.match.keyword_hit,
            context.match.matched_field,
        )

    async def _step_retrieval(self, context: PipelineContext) -> None:
        """Purpose: Gather KB excerpts and catalog items for a domain question.
        Inputs/Outputs: Input is PipelineContext; fills kb_hits and catalog_items.
        Side Effects / State: One embedding call (bounded by the client timeout).
        Dependencies: LanguageModel.embed, KnowledgeStore.search, catalog ranker.
        Failure Modes: Embedding or search errors leave kb_hits empty; ranking
            errors leave catalog_items empty. Neither aborts the turn.
        If Removed: Domain answers lose grounding in brand knowledge.
        Testing Notes: A TransientError from embed yields no hits and no user error.
        """
        if len(self._knowledge):
            try:
                vector = await self._llm.embed(prepare_embedding_text(context.user_message))
                context.kb_hits = self._knowledge.search(
                    vector,
                    filter_lang=context.language,
                    top_k=self._config.kb_top_k,
                    min_similarity=self._config.kb_min_similarity,
                )
            except (TransientError, ConfigurationMissing) as exc:
                logger.warning("user=%s kb status=skipped reason=%s", context.user_tag, exc)
                context.log("retrieval", f"kb skipped: {exc.__class__.__name__}", status="degraded")
                context.kb_hits = []
            except Exception as exc:
                logger.exception("user=%s kb search failed", context.user_tag)
                context.on_step_error("kb_search", exc)
                context.kb_hits = []

        try:
            context.catalog_items = rank_catalog(
                tokenize(context.user_message), self._catalog, self._config.catalog_top_n
            )
        except Exception as exc:
            logger.exception("user=%s catalog rank failed", context.user_tag)
            context.on_step_error("catalog_rank", exc)
            context.catalog_items = []

        context.log(
            "retrieval",
            f"kb_hits={len(context.kb_hits)} catalog={len(context.catalog_items)}",
        )
        logger.info(
            "user=%s kb_hits=%s top_sim=%s catalog=%s",
            context.user_tag,
            len(context.kb_hits),
            f"{context.kb_hits[0].similarity:.3f}" if context.kb_hits else "-",
            [item.name for item in context.catalog_items],
        )

    async def _step_slot_policy(self, context: PipelineContext) -> None:
        """Purpose: Merge slots from the message and choose at most one question.
        Inputs/Outputs: Input is PipelineContext; sets filled_slots, asked_slot, and
            question_text.
        Side Effects / State: Updates session slots. The question is only marked
            asked (flag, ask_count, last_asked_at) once generation succeeds.
        Dependencies: extract_slots, SessionState.next_question_slot.
        Failure Modes: None expected; errors are isolated by the step runner.
        If Removed: The assistant never personalizes advice by age/hair type/concern.
        Testing Notes: Empty session -> question for age; after an age is given the
            next question targets hairType once the cooldown has passed.
        """
        session = context.session
        context.filled_slots = session.merge_slots(extract_slots(context.normalized))
        slot = session.next_question_slot(context.now, self._config.ask_cooldown_sec)
        if slot:
            context.asked_slot = slot
            context.question_text = clarifying_question(slot, context.language)
        context.log(
            "slot_policy",
            f"filled={context.filled_slots} ask={context.asked_slot or '-'} ask_count={session.ask_count}",
        )
        logger.debug("user=%s session=%s", context.user_tag, json.dumps(session.log_view(), ensure_ascii=False))

    async def _step_generation(self, context: PipelineContext) -> None:
        """Purpose: Produce the reply for the chosen route.
        Inputs/Outputs: Input is PipelineContext; sets answer_text, parts, request.
        Side Effects / State: At most two model calls through the fallback chain;
            marks the pending question asked when the model answered.
        Dependencies: render_intent_reply, compose, FallbackChain.
        Failure Modes: Model failures become canned replies via the fallback chain.
        If Removed: The router classifies but never answers.
        Testing Notes: FAQ_MATCH makes no model call; other routes make exactly one
            unless the request shape is rejected.
        """
        if context.route == Route.FAQ_MATCH and context.match.record is not None:
            context.parts = render_intent_reply(context.match.record)
            context.answer_text = next((part.content for part in context.parts if part.kind == "text"), "")
            context.log("generation", f"faq={context.match.record.trigger}")
            logger.info("user=%s step=generation route=faq trigger=%s", context.user_tag, context.match.record.trigger)
            return

        history = context.session.history_list()
        persona = load_prompt(self._prompts_dir / "persona.txt", DEFAULT_PERSONA)
        blocks = self._context_blocks(context)
        context.request = compose(
            persona=persona,
            context_blocks=blocks,
            history=history,
            user_turn=context.user_message,
            max_output_tokens=self._config.max_output_tokens,
            model_name=self._config.model_name,
            max_context_chars=self._config.max_context_chars,
        )
        result = await self._fallback.run(context.request, language=context.language, user_tag=context.user_tag)
        answer = result.text
        if not result.ok:
            context.degraded = True
            context.asked_slot = None
            if context.route == Route.SMALL_TALK and result.error != "config":
                answer = SMALL_TALK_FALLBACK.get(context.language, SMALL_TALK_FALLBACK["en"])
        elif context.asked_slot:
            context.session.mark_asked(context.asked_slot, context.now)
            if context.question_text not in answer:
                answer = f"{answer.rstrip()}\n\n{context.question_text}"
        context.answer_text = answer
        context.parts = [ReplyPart(kind="text", content=answer)]
        context.log(
            "generation",
            f"route={context.route.value} ok={result.ok} attempts={result.attempts}",
            status="success" if result.ok else "degraded",
        )
        logger.info(
            "user=%s step=generation route=%s ok=%s attempts=%s",
            context.user_tag,
            context.route.value,
            result.ok,
            result.attempts,
        )

    def _context_blocks(self, context: PipelineContext) -> List[ContextBlock]:
        if context.route == Route.SMALL_TALK:
            instruction = load_prompt(self._prompts_dir / "small_talk.txt", "Reply with a short, warm greeting.")
            return [ContextBlock("Route instructions", instruction)]

        if context.route == Route.DOMAIN_QUERY:
            template = load_prompt(self._prompts_dir / "domain_query.txt", DEFAULT_DOMAIN_INSTRUCTION)
            question_rule = (
                render_prompt(ASK_QUESTION_RULE, question=context.question_text)
                if context.question_text
                else NO_QUESTION_RULE
            )
            instruction = render_prompt(template, max_steps=MAX_PRACTICAL_STEPS, question_rule=question_rule)
            return [
                ContextBlock("Route instructions", instruction),
                ContextBlock("Customer profile", describe_profile(context.session)),
                ContextBlock("Knowledge-base excerpts", format_hits(context.kb_hits)),
                ContextBlock("Catalog summary", summarize_catalog(context.catalog_items)),
            ]

        instruction = load_prompt(self._prompts_dir / "generic.txt", "Answer helpfully and briefly.")
        return [
            ContextBlock("Route instructions", instruction),
            ContextBlock("Current promotions", describe_promotions(self._intents)),
        ]

    async def _step_finalize(self, context: PipelineContext) -> None:
        """Purpose: Guarantee a reply and record the turn in session history.
        Inputs/Outputs: Input is PipelineContext; may set answer_text/parts.
        Side Effects / State: Appends the user message and assistant text to history.
        Dependencies: SessionState.append_turn.
        Failure Modes: None; a missing answer becomes the canned apology.
        If Removed: Failed turns would send nothing and history would not advance.
        Testing Notes: After N+k turns the history holds exactly N entries.
        """
        if not context.answer_text and not context.parts:
            context.degraded = True
            context.answer_text = apology_for(context.language)
            context.parts = [ReplyPart(kind="text", content=context.answer_text)]
        session = context.session
        session.append_turn("user", context.user_message)
        session.append_turn("assistant", context.answer_text)
        logger.info(
            "user=%s answer=%s degraded=%s errors=%s",
            context.user_tag,
            context.answer_text[:200],
            context.degraded,
            context.errors,
        )
        logger.debug("user=%s session_after=%s", context.user_tag, json.dumps(session.log_view(), ensure_ascii=False))


DEFAULT_DOMAIN_INSTRUCTION = (
    "Summarize the customer's situation, give at most <<MAX_STEPS>> practical steps, "
    "recommend at most one catalog item only if clearly relevant. <<QUESTION_RULE>>"
)


def _not_domain(context: object) -> bool:
    return getattr(context, "route", None) != Route.DOMAIN_QUERY


def is_small_talk(normalized: str, max_chars: int) -> bool:
    """Short greeting/thanks/farewell/how-are-you messages in Arabic or English."""
    if not normalized or len(normalized) > max_chars:
        return False
    return contains_any(normalized, SMALL_TALK_TERMS)


def is_domain_query(normalized: str) -> bool:
    """Hair/skin-care vocabulary membership test."""
    return contains_any(normalized, DOMAIN_TERMS)


def clarifying_question(slot: str, language: str) -> str:
    questions = CLARIFYING_QUESTIONS.get(slot, {})
    return questions.get(language) or questions.get("en", "")


def render_intent_reply(record: IntentRecord) -> List[ReplyPart]:
    """Purpose: Render an FAQ payload verbatim as ordered reply parts.
    Inputs/Outputs: Input is an IntentRecord; output is one text part (title,
        description, bullet highlights) followed by the image and gallery URLs.
    Side Effects / State: None.
    Dependencies: IntentReply optional fields.
    Failure Modes: Records with no text still produce their media parts.
    If Removed: FAQ answers would need a model call and could drift from the facts.
    Testing Notes: Order is title -> description -> highlights -> image -> gallery.
    """
    reply = record.reply
    lines: List[str] = []
    if reply.title:
        lines.append(reply.title)
    if reply.description:
        if lines:
            lines.append("")
        lines.append(reply.description)
    if reply.highlights:
        lines.append("")
        lines.extend(f"• {highlight}" for highlight in reply.highlights)
    parts: List[ReplyPart] = []
    text = "\n".join(lines).strip()
    if text:
        parts.append(ReplyPart(kind="text", content=text))
    if reply.image:
        parts.append(ReplyPart(kind="image_url", content=reply.image))
    parts.extend(ReplyPart(kind="image_url", content=url) for url in reply.gallery)
    return parts


def describe_profile(session: SessionState) -> str:
    known = {key: value for key, value in session.slots.items() if value}
    if not known:
        return "Nothing known yet about the child."
    return "\n".join(f"- {key}: {value}" for key, value in known.items())


def describe_promotions(intents: Sequence[IntentRecord]) -> str:
    for record in intents:
        if normalize_text(record.trigger) in PROMOTION_TRIGGERS:
            reply = record.reply
            lines = [reply.title] if reply.title else []
            lines.extend(f"- {item}" for item in reply.highlights)
            return "\n".join(lines)
    return ""
