"""Token-overlap ranking over the product catalog."""

from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple

from .models import CatalogItem
from .utils import contains_any, normalize_text
from .vocabulary import CHILD_FAMILY, HAIR_FAMILY

HAIR_BOOST = 1.0
CHILD_BOOST = 0.5
MIN_TOKEN_CHARS = 3


def item_blob(item: CatalogItem) -> str:
    """Normalized text used for matching: name, description, tags, and benefits."""
    parts = [item.name, item.description, *item.tags, *item.benefits, item.notes]
    return normalize_text(" ".join(part for part in parts if part))


def score_item(query_tokens: Iterable[str], query_text: str, blob: str) -> float:
    score = 0.0
    for token in query_tokens:
        if token and token in blob:
            score += 1.0
    if score <= 0:
        return 0.0
    if contains_any(query_text, HAIR_FAMILY) and contains_any(blob, HAIR_FAMILY):
        score += HAIR_BOOST
    if contains_any(query_text, CHILD_FAMILY) and contains_any(blob, CHILD_FAMILY):
        score += CHILD_BOOST
    return score


def rank(query_tokens: Iterable[str], catalog: Sequence[CatalogItem], limit: int = 3) -> List[CatalogItem]:
    """Purpose: Rank catalog items by query-token overlap with family boosts.
    Inputs/Outputs: Inputs are normalized query tokens, the catalog, and a limit;
        output is up to `limit` items in descending score.
    Side Effects / State: None.
    Dependencies: item_blob/score_item; HAIR_FAMILY/CHILD_FAMILY vocabularies.
    Failure Modes: Empty catalog, empty tokens, or limit <= 0 return [].
    If Removed: The model gets no product context and cannot recommend an item.
    Testing Notes: Equal scores keep catalog order; zero-overlap items are excluded.
    """
    tokens = sorted({token for token in query_tokens if len(token) >= MIN_TOKEN_CHARS})
    if not catalog or not tokens or limit <= 0:
        return []
    query_text = " ".join(tokens)
    scored: List[Tuple[float, int, CatalogItem]] = []
    for position, item in enumerate(catalog):
        score = score_item(tokens, query_text, item_blob(item))
        if score > 0:
            scored.append((score, position, item))
    scored.sort(key=lambda entry: (-entry[0], entry[1]))
    return [item for _, _, item in scored[:limit]]


def summarize(items: Sequence[CatalogItem]) -> str:
    """Render ranked items as a compact catalog context block."""
    lines: List[str] = []
    for item in items:
        line = f"- {item.name}"
        details = [detail for detail in (item.description, "، ".join(item.benefits)) if detail]
        if details:
            line += f": {' | '.join(details)}"
        extras = []
        if item.size:
            extras.append(f"size {item.size}")
        if item.price:
            extras.append(f"price {item.price}")
        if item.notes:
            extras.append(item.notes)
        if item.url:
            extras.append(item.url)
        if extras:
            line += f" ({'; '.join(extras)})"
        lines.append(line)
    return "\n".join(lines)
