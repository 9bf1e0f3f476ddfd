"""Offline builder for the knowledge-base embedding artifact read by KnowledgeStore.

Usage:
    python -m messenger_bot.knowledge.index_builder --source data/kb_source.json --out data/kb_index.json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..config import load_settings
from ..errors import DataLoadError
from ..gemini_client import GeminiClient
from ..utils import prepare_embedding_text

logger = logging.getLogger("messenger_bot.knowledge.builder")

Embed = Callable[[str], Awaitable[List[float]]]


def _text(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item).strip() for item in value if str(item).strip())
    return str(value or "").strip()


def _bilingual(row: Dict[str, Any], key: str) -> str:
    values = [_text(row.get(f"{key}_ar")), _text(row.get(f"{key}_en"))]
    single = _text(row.get(key))
    if single and single not in values:
        values.insert(0, single)
    return "\n".join(value for value in values if value)


def _doc_lang(row: Dict[str, Any]) -> str:
    has_ar = any(key.endswith("_ar") and row.get(key) for key in row)
    has_en = any(key.endswith("_en") and row.get(key) for key in row)
    if has_ar and has_en:
        return "bi"
    if has_ar:
        return "ar"
    if has_en:
        return "en"
    return str(row.get("lang") or "").strip().lower()


def product_doc(row: Dict[str, Any]) -> Dict[str, Any]:
    lines = [
        "PRODUCT",
        f"name: {_bilingual(row, 'name')}",
        f"features: {_bilingual(row, 'features')}",
        f"usage: {_bilingual(row, 'usage')}",
        f"ingredients: {_bilingual(row, 'ingredients')}",
        f"tags: {_bilingual(row, 'tags')}",
        f"size: {row.get('size') or ''}",
        f"age_range_years: {row.get('age_min') or ''}-{row.get('age_max') or ''}",
        f"price_egp: {row.get('price_egp') or ''}",
        f"link: {row.get('link') or ''}",
    ]
    return {
        "id": f"prod:{row.get('id')}",
        "type": "product",
        "lang": _doc_lang(row),
        "text": "\n".join(lines),
        "meta": row,
    }


def offer_doc(row: Dict[str, Any]) -> Dict[str, Any]:
    lines = [
        "OFFER",
        f"title: {_bilingual(row, 'title')}",
        f"bundle_items: {row.get('items') or ''}",
        f"price_egp: {row.get('price_egp') or ''}",
        f"old_price_egp: {row.get('old_price_egp') or ''}",
        f"valid: {row.get('valid_from') or ''} -> {row.get('valid_to') or ''}",
        f"notes: {_bilingual(row, 'notes')}",
    ]
    return {
        "id": f"offer:{row.get('offer_id')}",
        "type": "offer",
        "lang": _doc_lang(row),
        "text": "\n".join(lines),
        "meta": row,
    }


def snippet_doc(row: Dict[str, Any]) -> Dict[str, Any]:
    text = f"SNIPPET\ntopic: {row.get('topic') or ''}\n{_bilingual(row, 'text')}"
    return {"id": f"snip:{row.get('topic')}", "type": "snippet", "lang": _doc_lang(row), "text": text, "meta": row}


DOC_BUILDERS = {
    "products": product_doc,
    "offers": offer_doc,
    "snippets": snippet_doc,
}


def load_source(path: Path) -> List[Dict[str, Any]]:
    """Purpose: Read the editable KB source and turn each row into a document.
    Inputs/Outputs: Input is a JSON file with "products", "offers", and "snippets"
        lists; output is documents in that order.
    Side Effects / State: Reads the file.
    Dependencies: DOC_BUILDERS per section.
    Failure Modes: Raises DataLoadError for unreadable files, invalid JSON, or a
        source without any rows. Non-dict rows are skipped.
    If Removed: The index can only be produced by hand.
    Testing Notes: A source with one snippet yields one "snip:<topic>" document.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8-sig"))
    except OSError as exc:
        raise DataLoadError(f"cannot read {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise DataLoadError(f"invalid JSON in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise DataLoadError(f"{path} must be an object with products/offers/snippets lists")
    docs: List[Dict[str, Any]] = []
    for section, builder in DOC_BUILDERS.items():
        for row in data.get(section) or []:
            if isinstance(row, dict):
                docs.append(builder(row))
    if not docs:
        raise DataLoadError(f"{path} has no knowledge rows")
    return docs


async def build_index(docs: Sequence[Dict[str, Any]], embed: Embed, model: str) -> Dict[str, Any]:
    """Purpose: Embed every document and assemble the index artifact.
    Inputs/Outputs: Inputs are documents, an async embed function, and the model
        name to record; output is {"model", "dims", "docs"} with vectors attached.
    Side Effects / State: One embed call per document, sequentially.
    Dependencies: prepare_embedding_text, the same preparation the query path uses.
    Failure Modes: Embedding errors propagate; documents whose vector length
        differs from the first are dropped with a warning.
    If Removed: Query and document vectors could be prepared differently.
    Testing Notes: Use a fake embed and assert it saw normalized text.
    """
    built: List[Dict[str, Any]] = []
    dims: Optional[int] = None
    for doc in docs:
        vector = [float(value) for value in await embed(prepare_embedding_text(doc["text"]))]
        if dims is None:
            dims = len(vector)
        if not vector or len(vector) != dims:
            logger.warning("kb build dropped id=%s dims=%s expected=%s", doc.get("id"), len(vector), dims)
            continue
        built.append({**doc, "vector": vector})
    return {"model": model, "dims": dims or 0, "docs": built}


def write_index(payload: Dict[str, Any], out_path: Path) -> None:
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    logger.info("kb build wrote docs=%s dims=%s path=%s", len(payload["docs"]), payload["dims"], out_path)


def main(argv: Optional[Sequence[str]] = None) -> int:
    settings = load_settings()
    parser = argparse.ArgumentParser(description="Build the knowledge-base embedding index.")
    parser.add_argument("--source", type=Path, default=settings.kb_index_path.with_name("kb_source.json"))
    parser.add_argument("--out", type=Path, default=settings.kb_index_path)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    client = GeminiClient(settings)

    async def embed_document(text: str) -> List[float]:
        return await client.embed(text, task_type="retrieval_document")

    docs = load_source(args.source)
    payload = asyncio.run(build_index(docs, embed_document, settings.gemini_embed_model))
    write_index(payload, args.out)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
