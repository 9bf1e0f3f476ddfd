"""Precomputed embedding index over knowledge-base excerpts with cosine retrieval."""

from __future__ import annotations

import json
import logging
import math
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..errors import DataLoadError

logger = logging.getLogger("messenger_bot.knowledge")

EPSILON = 1e-8
KNOWN_LANGS = {"ar", "en", "bi"}
PERMISSIVE_LANGS = {"", "bi"}


@dataclass(frozen=True)
class KBRecord:
    """One knowledge-base excerpt with its embedding."""
    index: int
    record_id: str
    text: str
    lang: str
    vector: Tuple[float, ...]
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RetrievalHit:
    record: KBRecord
    similarity: float


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity with an epsilon guard for zero vectors."""
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    denom = float(np.linalg.norm(left) * np.linalg.norm(right)) + EPSILON
    return float(np.dot(left, right)) / denom


class _IndexSnapshot:
    """Immutable arrays for one loaded artifact."""

    def __init__(self, model: str, dims: int, records: List[KBRecord]) -> None:
        self.model = model
        self.dims = dims
        self.records = tuple(records)
        if records:
            self.matrix = np.asarray([record.vector for record in records], dtype=np.float64)
        else:
            self.matrix = np.zeros((0, dims), dtype=np.float64)
        self.matrix.setflags(write=False)
        self.norms = np.linalg.norm(self.matrix, axis=1)
        self.norms.setflags(write=False)


class KnowledgeStore:
    """Read-only KB index; search is safe to call from concurrent turns."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path
        self._snapshot = _IndexSnapshot(model="", dims=0, records=[])
        self._reload_lock = threading.Lock()

    @classmethod
    def load(cls, path: Path) -> "KnowledgeStore":
        """Purpose: Build a store from a precomputed artifact, degrading to empty.
        Inputs/Outputs: Input is the artifact path; returns a KnowledgeStore.
        Side Effects / State: Reads the file once; logs record counts.
        Dependencies: Uses parse_artifact and numpy.
        Failure Modes: Missing or corrupt artifacts produce an empty index and a
            degraded-mode warning instead of an exception.
        If Removed: Domain questions have no retrieved context.
        Testing Notes: Load a missing path and expect len(store) == 0.
        """
        store = cls(path)
        store.reload()
        return store

    def reload(self) -> int:
        """Re-read the artifact and swap the index; returns the record count."""
        if self._path is None:
            return 0
        with self._reload_lock:
            try:
                snapshot = parse_artifact(self._path)
            except DataLoadError as exc:
                logger.warning("kb status=degraded path=%s reason=%s", self._path, exc)
                snapshot = _IndexSnapshot(model="", dims=0, records=[])
            self._snapshot = snapshot
        logger.info(
            "kb status=loaded records=%s dims=%s model=%s",
            len(snapshot.records),
            snapshot.dims,
            snapshot.model,
        )
        return len(snapshot.records)

    @property
    def model(self) -> str:
        return self._snapshot.model

    @property
    def dims(self) -> int:
        return self._snapshot.dims

    @property
    def records(self) -> Tuple[KBRecord, ...]:
        return self._snapshot.records

    def __len__(self) -> int:
        return len(self._snapshot.records)

    def search(
        self,
        query_vector: Sequence[float],
        filter_lang: Optional[str] = None,
        top_k: int = 5,
        min_similarity: float = 0.0,
    ) -> List[RetrievalHit]:
        """Purpose: Rank KB records by cosine similarity to a query vector.
        Inputs/Outputs: Inputs are the query vector, optional language filter,
            top_k, and min_similarity; output is hits in descending similarity.
        Side Effects / State: None; reads an immutable snapshot.
        Dependencies: numpy matrix product over precomputed norms.
        Failure Modes: Empty index, empty query, or a dimension mismatch return [].
        If Removed: DOMAIN_QUERY turns lose knowledge-base grounding.
        Testing Notes: Never more than top_k hits; every hit >= min_similarity;
            equal scores keep load order.
        """
        snapshot = self._snapshot
        if top_k <= 0 or not snapshot.records or not query_vector:
            return []
        query = np.asarray(query_vector, dtype=np.float64)
        if query.ndim != 1 or query.shape[0] != snapshot.dims:
            logger.warning(
                "kb search skipped: query dims=%s index dims=%s",
                query.shape[0] if query.ndim == 1 else query.shape,
                snapshot.dims,
            )
            return []
        denom = snapshot.norms * float(np.linalg.norm(query)) + EPSILON
        sims = (snapshot.matrix @ query) / denom
        order = np.argsort(-sims, kind="stable")

        hits: List[RetrievalHit] = []
        for idx in order:
            similarity = float(sims[idx])
            if similarity < min_similarity:
                break
            record = snapshot.records[int(idx)]
            if filter_lang and record.lang not in PERMISSIVE_LANGS and record.lang != filter_lang:
                continue
            hits.append(RetrievalHit(record=record, similarity=similarity))
            if len(hits) >= top_k:
                break
        return hits


def parse_artifact(path: Path) -> _IndexSnapshot:
    """Purpose: Parse a KB artifact into an index snapshot.
    Inputs/Outputs: Input is the JSON artifact path; output is an _IndexSnapshot.
    Side Effects / State: Reads the file.
    Dependencies: json and _parse_record.
    Failure Modes: Raises DataLoadError for unreadable files, invalid JSON, or a
        payload without a docs list. Invalid records are dropped individually.
    If Removed: The artifact format has no single validation point.
    Testing Notes: A record whose vector length differs from "dims" is dropped and
        the remaining records keep the declared dimensionality.
    """
    try:
        raw = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise DataLoadError(f"cannot read {path}: {exc}") from exc
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise DataLoadError(f"invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict) or not isinstance(data.get("docs"), list):
        raise DataLoadError(f"{path} has no docs list")

    declared = data.get("dims")
    dims = int(declared) if isinstance(declared, int) and declared > 0 else 0
    records: List[KBRecord] = []
    dropped = 0
    for position, doc in enumerate(data["docs"]):
        vector = _parse_vector(doc.get("vector") if isinstance(doc, dict) else None)
        if vector is None:
            dropped += 1
            continue
        if not dims:
            dims = len(vector)
        if len(vector) != dims:
            dropped += 1
            continue
        records.append(_build_record(len(records), position, doc, vector))
    if dropped:
        logger.warning("kb dropped=%s records with missing or mismatched vectors", dropped)
    return _IndexSnapshot(model=str(data.get("model") or ""), dims=dims, records=records)


def _parse_vector(value: Any) -> Optional[Tuple[float, ...]]:
    if not isinstance(value, list) or not value:
        return None
    try:
        vector = tuple(float(v) for v in value)
    except (TypeError, ValueError):
        return None
    if not all(math.isfinite(v) for v in vector):
        return None
    return vector


def _build_record(index: int, position: int, doc: Dict[str, Any], vector: Tuple[float, ...]) -> KBRecord:
    lang = str(doc.get("lang") or "").strip().lower()
    if lang not in KNOWN_LANGS:
        lang = ""
    meta = doc.get("meta") or doc.get("metadata") or {}
    return KBRecord(
        index=index,
        record_id=str(doc.get("id") or f"doc:{position}"),
        text=str(doc.get("text") or ""),
        lang=lang,
        vector=vector,
        metadata=dict(meta) if isinstance(meta, dict) else {},
    )


def format_hits(hits: Sequence[RetrievalHit], max_chars: int = 0) -> str:
    """Render hits as one context block; empty string when there are none."""
    if not hits:
        return ""
    blocks = []
    for hit in hits:
        text = hit.record.text.strip()
        if max_chars and len(text) > max_chars:
            text = text[:max_chars].rstrip() + "…"
        blocks.append(f"[{hit.record.record_id} | sim={hit.similarity:.2f}]\n{text}")
    return "\n\n".join(blocks)
