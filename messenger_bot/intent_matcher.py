"""Fuzzy FAQ intent matching over the static intent table."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Optional, Sequence, Tuple

from rapidfuzz import fuzz

from .models import IntentRecord
from .utils import normalize_text

DEFAULT_THRESHOLD = 0.32
KEYWORD_FIELDS = {"trigger", "keyword"}


@dataclass(frozen=True)
class MatchResult:
    """Best intent for a message; score is a distance (0 identical, 1 unrelated)."""
    record: Optional[IntentRecord]
    score: float
    confident: bool
    keyword_hit: bool = False
    matched_field: str = ""


NO_MATCH = MatchResult(record=None, score=1.0, confident=False)


@lru_cache(maxsize=2048)
def _normalized(value: str) -> str:
    return normalize_text(value)


def field_distance(normalized_text: str, candidate: str, whole_phrase: bool = False) -> float:
    """Distance in [0, 1] between normalized text and a raw candidate phrase.

    Keywords score with token-set similarity (a keyword contained in the message is
    distance 0); whole phrases score with normalized indel similarity.
    """
    target = _normalized(candidate)
    if not normalized_text or not target:
        return 1.0
    if whole_phrase:
        return 1.0 - fuzz.ratio(normalized_text, target) / 100.0
    return 1.0 - fuzz.token_set_ratio(normalized_text, target) / 100.0


def _record_fields(record: IntentRecord) -> Iterable[Tuple[str, str]]:
    yield "trigger", record.trigger
    for keyword in record.keywords:
        yield "keyword", keyword
    for example in record.examples:
        yield "example", example
    if record.reply.title:
        yield "title", record.reply.title
    if record.reply.description:
        yield "description", record.reply.description


def has_keyword_hit(normalized_text: str, record: IntentRecord) -> bool:
    """Purpose: Check for a literal keyword (or trigger) substring in the text.
    Inputs/Outputs: Inputs are normalized text and a record; output is a bool.
    Side Effects / State: None.
    Dependencies: Uses the cached normalizer for keywords.
    Failure Modes: Empty text returns False.
    If Removed: Strict mode cannot reject fuzzy-only matches.
    Testing Notes: "في عروض" hits the "عروض" keyword of the offers record.
    """
    if not normalized_text:
        return False
    for phrase in (record.trigger, *record.keywords):
        key = _normalized(phrase)
        if key and key in normalized_text:
            return True
    return False


def score_record(normalized_text: str, record: IntentRecord) -> Tuple[float, str]:
    """Return the record's best (minimum) field distance and the field that gave it."""
    best = 1.0
    best_field = ""
    for field_name, value in _record_fields(record):
        distance = field_distance(normalized_text, value, whole_phrase=field_name not in KEYWORD_FIELDS)
        if distance < best:
            best = distance
            best_field = field_name
            if best == 0.0:
                break
    return best, best_field


class IntentMatcher:
    """Stateless matcher; the intent catalog is passed on every call."""

    def __init__(self, threshold: float = DEFAULT_THRESHOLD, require_keyword_hit: bool = False) -> None:
        self.threshold = threshold
        self.require_keyword_hit = require_keyword_hit

    def match(self, normalized_text: str, catalog: Sequence[IntentRecord]) -> MatchResult:
        """Purpose: Find the intent record closest to the normalized message.
        Inputs/Outputs: Inputs are normalized text and the intent catalog; output is
            a MatchResult with the best record, its distance, and confidence.
        Side Effects / State: None.
        Dependencies: rapidfuzz token_set_ratio via field_distance.
        Failure Modes: Never raises; empty text or catalog yields NO_MATCH.
        If Removed: FAQ replies can only be reached by exact string equality.
        Testing Notes: Exact trigger text is confident with score 0; ties resolve
            to the record registered first.
        """
        if not normalized_text or not catalog:
            return NO_MATCH
        best_record: Optional[IntentRecord] = None
        best_score = 1.0
        best_field = ""
        for record in catalog:
            score, field_name = score_record(normalized_text, record)
            if best_record is None or score < best_score:
                best_record = record
                best_score = score
                best_field = field_name
        if best_record is None:
            return NO_MATCH
        keyword_hit = has_keyword_hit(normalized_text, best_record)
        confident = best_score <= self.threshold
        if self.require_keyword_hit and not keyword_hit:
            confident = False
        return MatchResult(
            record=best_record,
            score=round(best_score, 4),
            confident=confident,
            keyword_hit=keyword_hit,
            matched_field=best_field,
        )
