from __future__ import annotations

from messenger_bot.agent_pipeline import (
    HairCareAgent,
    Route,
    RouterConfig,
    is_domain_query,
    is_small_talk,
    render_intent_reply,
)
from messenger_bot.config import BASE_DIR
from messenger_bot.errors import ConfigurationMissing, TransientError, UnsupportedRequestShape
from messenger_bot.fallback_chain import APOLOGY, LIMITED_SERVICE
from messenger_bot.knowledge.knowledge_store import KnowledgeStore
from messenger_bot.models import IntentRecord, IntentReply
from messenger_bot.session_store import InMemorySessionStore
from messenger_bot.utils import normalize_text
from messenger_bot.vocabulary import CLARIFYING_QUESTIONS

from conftest import FakeModel

AGE_QUESTION = CLARIFYING_QUESTIONS["age"]["ar"]
HAIR_TYPE_QUESTION = CLARIFYING_QUESTIONS["hairType"]["ar"]


def _agent(model, packaged_data, clock, knowledge=None, config=None):
    intents, products = packaged_data
    store = InMemorySessionStore(ttl_sec=3600, max_history=6, max_ask_count=2, clock=clock)
    agent = HairCareAgent(
        llm=model,
        session_store=store,
        intents=intents,
        catalog=products,
        knowledge=knowledge or KnowledgeStore(),
        prompts_dir=BASE_DIR / "prompts",
        config=config or RouterConfig(),
        clock=clock,
    )
    return agent, store


def _question_count(text: str) -> int:
    return sum(text.count(question["ar"]) + text.count(question["en"]) for question in CLARIFYING_QUESTIONS.values())


async def test_greeting_with_faq_keyword_routes_to_small_talk(fake_model, packaged_data, clock) -> None:
    agent, _ = _agent(fake_model, packaged_data, clock)
    reply = await agent.handle_message("user-1", "هاي، في عروض؟")
    assert reply.route == Route.SMALL_TALK
    assert len(fake_model.requests) == 1


async def test_faq_reply_is_verbatim_and_skips_the_model(fake_model, packaged_data, clock) -> None:
    agent, _ = _agent(fake_model, packaged_data, clock)
    reply = await agent.handle_message("user-1", "في عروض؟")
    assert reply.route == Route.FAQ_MATCH
    assert fake_model.requests == []
    assert reply.parts[0].kind == "text"
    assert reply.parts[0].content.startswith("عروضنا الحالية")
    assert "• شامبو + شاور جل بـ 220 بدل 270" in reply.parts[0].content
    assert [part.kind for part in reply.parts[1:]] == ["image_url"] * 4


async def test_domain_query_asks_one_question_then_moves_to_next_slot(fake_model, packaged_data, clock) -> None:
    agent, store = _agent(fake_model, packaged_data, clock)

    first = await agent.handle_message("user-1", "شعر بنتي منفوش جدا")
    assert first.route == Route.DOMAIN_QUERY
    assert first.asked_slot == "age"
    instruction = fake_model.requests[-1].system_instruction
    assert _question_count(instruction) == 1
    assert AGE_QUESTION in instruction
    assert first.answer_text.count(AGE_QUESTION) == 1

    clock.advance(120)
    second = await agent.handle_message("user-1", "عمرها 5 سنين والشعر ناشف")
    assert second.route == Route.DOMAIN_QUERY
    assert second.asked_slot == "hairType"
    instruction = fake_model.requests[-1].system_instruction
    assert AGE_QUESTION not in instruction
    assert HAIR_TYPE_QUESTION in instruction
    assert _question_count(instruction) == 1

    state = await store.get("user-1")
    assert state.slots["age"] == "5 years"
    assert state.slots["concern"] == "frizz"
    assert state.ask_count == 2


async def test_ask_budget_and_cooldown_stop_questions(fake_model, packaged_data, clock) -> None:
    agent, _ = _agent(fake_model, packaged_data, clock)
    first = await agent.handle_message("user-1", "شعر بنتي منفوش جدا")
    assert first.asked_slot == "age"
    within_cooldown = await agent.handle_message("user-1", "شعرها بيتقصف كمان")
    assert within_cooldown.asked_slot is None
    assert "Do not ask the customer any question" in fake_model.requests[-1].system_instruction
    clock.advance(120)
    assert (await agent.handle_message("user-1", "والشعر بيقع")).asked_slot == "hairType"
    clock.advance(120)
    assert (await agent.handle_message("user-1", "الشعر ناشف")).asked_slot is None


async def test_embedding_failure_still_answers(packaged_data, clock, write_kb) -> None:
    knowledge = KnowledgeStore.load(
        write_kb([{"id": "kb:1", "text": "Use a wide-tooth comb.", "lang": "ar", "vector": [1.0, 0.0, 0.0]}])
    )
    model = FakeModel(answer="نصيحة بسيطة", embed_error=TransientError("embed timeout"))
    agent, _ = _agent(model, packaged_data, clock, knowledge=knowledge)
    reply = await agent.handle_message("user-1", "شعر بنتي منفوش جدا")
    assert reply.route == Route.DOMAIN_QUERY
    assert reply.degraded is False
    assert reply.answer_text.startswith("نصيحة بسيطة")
    assert "### Knowledge-base excerpts" not in model.requests[-1].system_instruction
    assert model.embedded == [normalize_text("شعر بنتي منفوش جدا")]


async def test_domain_query_includes_kb_and_catalog_context(packaged_data, clock, write_kb) -> None:
    knowledge = KnowledgeStore.load(
        write_kb([{"id": "kb:frizz", "text": "Apply leave-in on damp hair.", "lang": "ar", "vector": [1.0, 0.0, 0.0]}])
    )
    model = FakeModel(vector=[1.0, 0.0, 0.0])
    agent, _ = _agent(model, packaged_data, clock, knowledge=knowledge)
    await agent.handle_message("user-1", "شامبو للشعر المنفوش")
    instruction = model.requests[-1].system_instruction
    assert "### Knowledge-base excerpts" in instruction
    assert "kb:frizz" in instruction
    assert "### Catalog summary" in instruction
    assert "SmartKidz شامبو" in instruction
    assert instruction.index("### Route instructions") < instruction.index("### Knowledge-base excerpts")


async def test_generic_route_carries_promotions(fake_model, packaged_data, clock) -> None:
    agent, _ = _agent(fake_model, packaged_data, clock)
    reply = await agent.handle_message("user-1", "what time do you open tomorrow")
    assert reply.route == Route.GENERIC
    instruction = fake_model.requests[-1].system_instruction
    assert "### Current promotions" in instruction
    assert "عروضنا الحالية" in instruction


async def test_model_failure_returns_apology_in_user_language(packaged_data, clock) -> None:
    model = FakeModel(generate_error=TransientError("rate limited"))
    agent, _ = _agent(model, packaged_data, clock)
    reply = await agent.handle_message("user-1", "شعر بنتي منفوش جدا")
    assert reply.degraded is True
    assert reply.answer_text == APOLOGY["ar"]
    assert [part.content for part in reply.parts] == [APOLOGY["ar"]]


async def test_missing_configuration_returns_limited_service(packaged_data, clock) -> None:
    model = FakeModel(generate_error=ConfigurationMissing("no key"))
    agent, _ = _agent(model, packaged_data, clock)
    reply = await agent.handle_message("user-1", "what time do you open tomorrow")
    assert reply.answer_text == LIMITED_SERVICE["en"]
    faq = await agent.handle_message("user-1", "في عروض؟")
    assert faq.route == Route.FAQ_MATCH


async def test_small_talk_failure_uses_canned_greeting(packaged_data, clock) -> None:
    model = FakeModel(generate_error=TransientError("down"))
    agent, _ = _agent(model, packaged_data, clock)
    reply = await agent.handle_message("user-1", "hello")
    assert reply.route == Route.SMALL_TALK
    assert reply.answer_text
    assert reply.answer_text != APOLOGY["en"]


async def test_shape_rejection_retries_flattened(packaged_data, clock) -> None:
    class ShapeSensitiveModel(FakeModel):
        async def generate(self, request):
            self.requests.append(request)
            if request.system_instruction is not None:
                raise UnsupportedRequestShape("system_instruction not supported")
            return "flattened answer"

    model = ShapeSensitiveModel()
    agent, _ = _agent(model, packaged_data, clock)
    reply = await agent.handle_message("user-1", "what time do you open tomorrow")
    assert reply.answer_text == "flattened answer"
    assert len(model.requests) == 2


async def test_history_keeps_last_turns_only(fake_model, packaged_data, clock) -> None:
    agent, store = _agent(fake_model, packaged_data, clock)
    for index in range(5):
        await agent.handle_message("user-1", f"question number {index}")
    history = (await store.get("user-1")).history_list()
    assert len(history) == 6
    assert history[-2].content == "question number 4"
    assert history[-1].role == "assistant"


async def test_previous_turns_are_sent_as_history(fake_model, packaged_data, clock) -> None:
    agent, _ = _agent(fake_model, packaged_data, clock)
    await agent.handle_message("user-1", "what time do you open tomorrow")
    await agent.handle_message("user-1", "and on friday")
    messages = fake_model.requests[-1].messages
    assert [message.role for message in messages] == ["user", "assistant", "user"]
    assert messages[0].content == "what time do you open tomorrow"
    assert messages[-1].content == "and on friday"


async def test_users_do_not_share_sessions(fake_model, packaged_data, clock) -> None:
    agent, store = _agent(fake_model, packaged_data, clock)
    await agent.handle_message("user-1", "شعر بنتي منفوش جدا")
    reply = await agent.handle_message("user-2", "شعر ابني ناشف")
    assert reply.asked_slot == "age"
    assert (await store.get("user-2")).slots["concern"] == "dryness"


def test_route_helpers() -> None:
    assert is_small_talk(normalize_text("Thanks!"), 40)
    assert not is_small_talk(normalize_text("thanks, my daughter's hair gets very frizzy after every wash"), 40)
    assert is_domain_query(normalize_text("عندي مشكلة في الشعر"))
    assert not is_domain_query(normalize_text("what time do you open tomorrow"))


def test_render_intent_reply_order(packaged_data) -> None:
    intents, _ = packaged_data
    info = next(record for record in intents if record.trigger == "info")
    parts = render_intent_reply(info)
    assert [part.kind for part in parts] == ["text", "image_url"]
    text = parts[0].content
    assert text.index(info.reply.title) < text.index(info.reply.description) < text.index(info.reply.highlights[0])
    assert parts[1].content == info.reply.image


async def test_suffixed_hair_word_routes_to_domain(fake_model, packaged_data, clock) -> None:
    agent, store = _agent(fake_model, packaged_data, clock)
    reply = await agent.handle_message("user-1", "شعرها بيقع كتير")
    assert reply.route == Route.DOMAIN_QUERY
    assert reply.asked_slot == "age"
    assert (await store.get("user-1")).slots["concern"] == "shedding"
    for message in ("شعري ناشف", "شعره طويل ومتلخبط", "شعرك"):
        assert is_domain_query(normalize_text(message))


async def test_failed_generation_does_not_spend_the_question(packaged_data, clock) -> None:
    model = FakeModel(generate_error=TransientError("rate limited"))
    agent, store = _agent(model, packaged_data, clock)
    failed = await agent.handle_message("user-1", "شعر بنتي منفوش جدا")
    assert failed.answer_text == APOLOGY["ar"]
    assert failed.asked_slot is None
    state = await store.get("user-1")
    assert state.ask_count == 0
    assert state.last_asked_at is None

    model.generate_error = None
    retried = await agent.handle_message("user-1", "شعر بنتي منفوش جدا")
    assert retried.asked_slot == "age"
    assert retried.answer_text.count(AGE_QUESTION) == 1
    assert (await store.get("user-1")).ask_count == 1


async def test_media_only_faq_keeps_urls_out_of_history(fake_model, packaged_data, clock) -> None:
    _, products = packaged_data
    photos = IntentRecord(
        trigger="photos",
        keywords=("صور",),
        reply=IntentReply(image="https://cdn.example.com/pack.jpg", gallery=("https://cdn.example.com/1.jpg",)),
    )
    agent, store = _agent(fake_model, ((photos,), products), clock)
    reply = await agent.handle_message("user-1", "صور")
    assert reply.route == Route.FAQ_MATCH
    assert reply.degraded is False
    assert reply.answer_text == ""
    assert [part.kind for part in reply.parts] == ["image_url", "image_url"]
    history = (await store.get("user-1")).history_list()
    assert [turn.role for turn in history] == ["user"]
