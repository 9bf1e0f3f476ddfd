"""Rule-based slot extraction for the hair-care dialogue."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from .utils import contains_any, normalize_text
from .vocabulary import AGE_CUES, AGE_UNITS, AUDIENCE_TERMS, CONCERN_TERMS, HAIR_TYPE_TERMS


@dataclass(frozen=True)
class SlotValue:
    """One extracted slot value."""
    key: str
    value: str


_UNIT_PATTERN = "|".join(
    sorted((re.escape(normalize_text(unit)) for unit in AGE_UNITS), key=len, reverse=True)
)
_UNIT_LOOKUP = {normalize_text(unit): kind for unit, kind in AGE_UNITS.items()}
_CUE_PATTERN = "|".join(re.escape(normalize_text(cue)) for cue in AGE_CUES)

AGE_NUMBER_UNIT_RE = re.compile(rf"(?<!\d)(\d{{1,2}})\s*({_UNIT_PATTERN})\b")
AGE_CUE_NUMBER_RE = re.compile(rf"\b(?:{_CUE_PATTERN})\s+(\d{{1,2}})(?!\d)")
DUAL_YEARS_RE = re.compile(r"\bسنتين\b")


def extract_age(normalized: str) -> Optional[str]:
    """Purpose: Pull a child's age from normalized text.
    Inputs/Outputs: Input is normalized text; output is "<n> years" / "<n> months"
        or None.
    Side Effects / State: None.
    Dependencies: Uses AGE_UNITS/AGE_CUES from vocabulary.
    Failure Modes: Numbers not adjacent to an age word are ignored, so quantities
        and prices are not mistaken for ages.
    If Removed: The age slot is never filled and the bot keeps asking for it.
    Testing Notes: "عمرها 5 سنين" -> "5 years"; "8 شهور" -> "8 months".
    """
    match = AGE_NUMBER_UNIT_RE.search(normalized)
    if match:
        number = int(match.group(1))
        kind = _UNIT_LOOKUP.get(match.group(2), "years")
        return f"{number} {kind}"
    if DUAL_YEARS_RE.search(normalized):
        return "2 years"
    match = AGE_CUE_NUMBER_RE.search(normalized)
    if match:
        return f"{int(match.group(1))} years"
    return None


def _match_vocabulary(normalized: str, vocabulary: Dict[str, Tuple[str, ...]]) -> Optional[str]:
    for canonical, terms in vocabulary.items():
        if contains_any(normalized, terms):
            return canonical
    return None


def extract_slots(normalized: str) -> List[SlotValue]:
    """Return every slot value found in normalized text, in slot-key order."""
    if not normalized:
        return []
    found: List[SlotValue] = []
    age = extract_age(normalized)
    if age:
        found.append(SlotValue("age", age))
    hair_type = _match_vocabulary(normalized, HAIR_TYPE_TERMS)
    if hair_type:
        found.append(SlotValue("hairType", hair_type))
    concern = _match_vocabulary(normalized, CONCERN_TERMS)
    if concern:
        found.append(SlotValue("concern", concern))
    audience = _match_vocabulary(normalized, AUDIENCE_TERMS)
    if audience:
        found.append(SlotValue("audience", audience))
    return found


def slots_as_dict(values: Iterable[SlotValue]) -> Dict[str, str]:
    return {value.key: value.value for value in values}
