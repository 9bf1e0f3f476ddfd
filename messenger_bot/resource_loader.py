"""Static data loaders for the intent table and the product catalog.

Both files are read once at startup and returned as immutable tuples that the
router and its components share by reference.
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .errors import DataLoadError
from .models import CatalogItem, IntentRecord, IntentReply
from .utils import normalize_key

logger = logging.getLogger("messenger_bot.resources")

NAME_KEYS = ["name", "name_ar", "name_en", "الاسم", "product name"]
DESC_KEYS = ["description", "desc", "الوصف", "features", "usage"]
TAG_KEYS = ["tags", "tags_ar", "tags_en", "الكلمات"]
BENEFIT_KEYS = ["benefits", "الفوائد"]
INGREDIENT_KEYS = ["ingredients", "المكونات"]
PRICE_KEYS = ["price", "price_egp", "السعر"]
SIZE_KEYS = ["size", "الحجم"]
LINK_KEYS = ["url", "link", "product link", "الرابط"]
IMAGE_KEYS = ["image", "image_url", "الصوره"]
NOTE_KEYS = ["notes", "ملاحظات"]


@dataclass
class ResourceMeta:
    """Metadata describing a data file version for logging."""
    file_name: str
    updated_at: str
    sha256: str
    count: int


class ResourceLoader:
    def __init__(self, intents_path: Path, products_path: Path) -> None:
        """Purpose: Configure the loader with intent and product file paths.
        Inputs/Outputs: Inputs are two Paths to JSON files; no return value.
        Side Effects / State: Stores the paths for later load calls.
        Dependencies: None beyond Path usage.
        Failure Modes: None at init; load_* methods handle read/parse errors.
        If Removed: Static FAQ and catalog data cannot be configured.
        Testing Notes: Instantiate with temp paths and call load_intents().
        """
        self._intents_path = intents_path
        self._products_path = products_path

    def load_intents(self) -> Tuple[Tuple[IntentRecord, ...], ResourceMeta]:
        """Purpose: Load and validate the FAQ intent table.
        Inputs/Outputs: No inputs; returns a tuple of IntentRecord and ResourceMeta.
        Side Effects / State: Reads file contents and computes hash/mtime.
        Dependencies: Uses json, hashlib, and pydantic validation.
        Failure Modes: Missing file, invalid JSON, or a non-list payload raise
            DataLoadError; individual invalid records are skipped with a warning.
        If Removed: The router has no FAQ table and never takes the FAQ path.
        Testing Notes: Load a small intents file and check keyword tuples.
        """
        rows, meta = _read_rows(self._intents_path, list_key="intents")
        records: List[IntentRecord] = []
        for row in rows:
            if not isinstance(row, dict) or not row.get("trigger"):
                continue
            reply = row.get("reply") or {}
            try:
                records.append(
                    IntentRecord(
                        trigger=str(row["trigger"]).strip(),
                        keywords=tuple(_as_strings(row.get("keywords"))),
                        examples=tuple(_as_strings(row.get("examples"))),
                        reply=IntentReply(
                            title=str(reply.get("title") or ""),
                            description=str(reply.get("description") or ""),
                            highlights=tuple(_as_strings(reply.get("highlights"))),
                            image=reply.get("image") or None,
                            gallery=tuple(_as_strings(reply.get("gallery"))),
                        ),
                    )
                )
            except ValidationError as exc:
                logger.warning("skip intent trigger=%s error=%s", row.get("trigger"), exc)
        meta.count = len(records)
        return tuple(records), meta

    def load_products(self) -> Tuple[Tuple[CatalogItem, ...], ResourceMeta]:
        """Load the product catalog; raises DataLoadError like load_intents."""
        rows, meta = _read_rows(self._products_path, list_key="items")
        items: List[CatalogItem] = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            name = _get_first_value(row, NAME_KEYS)
            if not name:
                continue
            items.append(
                CatalogItem(
                    name=str(name).strip(),
                    description=str(_get_first_value(row, DESC_KEYS) or "").strip(),
                    tags=tuple(_as_strings(_get_first_value(row, TAG_KEYS))),
                    benefits=tuple(_as_strings(_get_first_value(row, BENEFIT_KEYS))),
                    ingredients=tuple(_as_strings(_get_first_value(row, INGREDIENT_KEYS))),
                    price=_optional_str(_get_first_value(row, PRICE_KEYS)),
                    size=_optional_str(_get_first_value(row, SIZE_KEYS)),
                    url=_optional_str(_get_first_value(row, LINK_KEYS)),
                    image=_optional_str(_get_first_value(row, IMAGE_KEYS)),
                    notes=str(_get_first_value(row, NOTE_KEYS) or "").strip(),
                )
            )
        meta.count = len(items)
        return tuple(items), meta


def load_or_empty(loader, label: str) -> tuple:
    """Purpose: Run a loader and degrade to an empty collection on DataLoadError.
    Inputs/Outputs: Input is a zero-arg loader returning (records, meta) and a label
        for logs; output is the records tuple (possibly empty).
    Side Effects / State: Logs the file version or a degraded-mode warning.
    Dependencies: Used by app startup for intents and products.
    Failure Modes: Only DataLoadError is absorbed; programming errors propagate.
    If Removed: A missing data file would crash startup instead of degrading.
    Testing Notes: Point at a missing file and expect an empty tuple.
    """
    try:
        records, meta = loader()
    except DataLoadError as exc:
        logger.warning("data=%s status=degraded reason=%s", label, exc)
        return ()
    logger.info(
        "data=%s file=%s count=%s sha256=%s updated_at=%s",
        label,
        meta.file_name,
        meta.count,
        meta.sha256[:12],
        meta.updated_at,
    )
    return records


def _read_rows(path: Path, list_key: str) -> Tuple[Sequence[Any], ResourceMeta]:
    try:
        raw_bytes = path.read_bytes()
        updated_at = datetime.fromtimestamp(path.stat().st_mtime).isoformat()
    except OSError as exc:
        raise DataLoadError(f"cannot read {path}: {exc}") from exc
    try:
        data = json.loads(raw_bytes.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise DataLoadError(f"invalid JSON in {path}: {exc}") from exc
    if isinstance(data, dict):
        data = data.get(list_key, [])
    if not isinstance(data, list):
        raise DataLoadError(f"expected a list of records in {path}")
    meta = ResourceMeta(
        file_name=path.name,
        updated_at=updated_at,
        sha256=hashlib.sha256(raw_bytes).hexdigest(),
        count=len(data),
    )
    return data, meta


def _get_first_value(item: Dict[str, Any], keys: List[str]) -> Optional[Any]:
    """Purpose: Find the first matching field in a dict by key synonyms.
    Inputs/Outputs: Input is a raw dict and a list of candidate keys; returns value or None.
    Side Effects / State: None.
    Dependencies: Uses normalize_key and _has_value.
    Failure Modes: Returns None when no keys match or values are empty.
    If Removed: Product files exported with Arabic or suffixed headers stop loading.
    Testing Notes: Verify "name_ar" and "الاسم" both resolve to the name field.
    """
    normalized_map = {normalize_key(k): k for k in item.keys()}
    for key in keys:
        normalized = normalize_key(key)
        if normalized in normalized_map:
            value = item.get(normalized_map[normalized])
            if _has_value(value):
                return value
    return None


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    if isinstance(value, (list, tuple)) and not value:
        return False
    return True


def _as_strings(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        parts = value.split(",") if "," in value else [value]
        return [part.strip() for part in parts if part.strip()]
    if isinstance(value, (list, tuple)):
        return [str(part).strip() for part in value if _has_value(part)]
    return [str(value)]


def _optional_str(value: Any) -> Optional[str]:
    if not _has_value(value):
        return None
    return str(value).strip()
