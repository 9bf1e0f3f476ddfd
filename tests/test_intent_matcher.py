from __future__ import annotations

from messenger_bot.intent_matcher import IntentMatcher, field_distance, has_keyword_hit
from messenger_bot.models import IntentRecord, IntentReply
from messenger_bot.utils import normalize_text


def test_exact_trigger_is_confident(packaged_data) -> None:
    intents, _ = packaged_data
    safety = next(record for record in intents if record.trigger == "safety")
    result = IntentMatcher().match(normalize_text("safety"), intents)
    assert result.confident is True
    assert result.record == safety
    assert result.score == 0.0


def test_offers_keyword_matches_offers_record(packaged_data) -> None:
    intents, _ = packaged_data
    result = IntentMatcher().match(normalize_text("في عروض؟"), intents)
    assert result.record is not None
    assert result.record.trigger == "offer"
    assert result.score <= 0.32
    assert result.confident is True
    assert result.keyword_hit is True


def test_unrelated_message_is_not_confident(packaged_data) -> None:
    intents, _ = packaged_data
    result = IntentMatcher().match(normalize_text("the weather is lovely in alexandria today"), intents)
    assert result.confident is False


def test_empty_input_or_catalog_returns_no_match(simple_intents) -> None:
    matcher = IntentMatcher()
    assert matcher.match("", simple_intents).record is None
    assert matcher.match("عروض", []).record is None


def test_hamza_variants_match_same_record(simple_intents) -> None:
    matcher = IntentMatcher()
    with_hamza = matcher.match(normalize_text("هل هو أمان؟"), simple_intents)
    without_hamza = matcher.match(normalize_text("هل هو امان"), simple_intents)
    assert with_hamza.record == without_hamza.record
    assert with_hamza.record.trigger == "safety"
    assert with_hamza.score == without_hamza.score


def test_ties_resolve_to_first_record() -> None:
    first = IntentRecord(trigger="alpha", keywords=("shared",), reply=IntentReply(title="first"))
    second = IntentRecord(trigger="beta", keywords=("shared",), reply=IntentReply(title="second"))
    result = IntentMatcher().match("shared", [first, second])
    assert result.record == first
    result = IntentMatcher().match("shared", [second, first])
    assert result.record == second


def test_strict_mode_requires_literal_keyword() -> None:
    record = IntentRecord(
        trigger="availability",
        keywords=("pharmacy",),
        examples=("where can i buy it",),
    )
    loose = IntentMatcher(threshold=0.32).match("where can i buy it", [record])
    strict = IntentMatcher(threshold=0.32, require_keyword_hit=True).match("where can i buy it", [record])
    assert loose.confident is True
    assert loose.matched_field == "example"
    assert strict.confident is False
    assert strict.record == record


def test_threshold_controls_confidence(simple_intents) -> None:
    text = normalize_text("discounts")
    loose = IntentMatcher(threshold=0.5).match(text, simple_intents)
    tight = IntentMatcher(threshold=0.0).match(text, simple_intents)
    assert loose.record == tight.record
    assert loose.score == tight.score
    assert loose.confident is True
    assert tight.confident is False


def test_field_distance_bounds() -> None:
    assert field_distance("عروض", "عروض") == 0.0
    assert field_distance("", "عروض") == 1.0
    assert 0.0 <= field_distance("hello there", "offers", whole_phrase=True) <= 1.0


def test_keyword_hit_uses_normalized_keywords(simple_intents) -> None:
    safety = simple_intents[1]
    assert has_keyword_hit("هو امان", safety)
    assert not has_keyword_hit("", safety)
