from __future__ import annotations

import json

import pytest

from messenger_bot.errors import DataLoadError
from messenger_bot.resource_loader import ResourceLoader, load_or_empty


def test_packaged_intents_and_products_load(packaged_data) -> None:
    intents, products = packaged_data
    assert [record.trigger for record in intents] == ["offer", "info", "safety", "availability"]
    offer = intents[0]
    assert "عروض" in offer.keywords
    assert len(offer.reply.gallery) == 4
    assert intents[1].reply.image
    assert intents[3].reply.gallery == ()
    assert len(products) == 2
    assert products[0].name == "SmartKidz شامبو"


def test_product_keys_accept_synonyms(tmp_path) -> None:
    products = tmp_path / "products.json"
    products.write_text(
        json.dumps(
            {"items": [{"Product Name": "Oil", "desc": "Light oil", "price_egp": 150, "Tags": "oil, hair"}, {"desc": "x"}]}
        ),
        encoding="utf-8",
    )
    loader = ResourceLoader(tmp_path / "intents.json", products)
    items, meta = loader.load_products()
    assert len(items) == 1
    assert items[0].name == "Oil"
    assert items[0].description == "Light oil"
    assert items[0].price == "150"
    assert meta.count == 1
    assert len(meta.sha256) == 64


def test_invalid_intent_rows_are_skipped(tmp_path) -> None:
    intents = tmp_path / "intents.json"
    intents.write_text(
        json.dumps([{"keywords": ["no trigger"]}, {"trigger": "ok", "keywords": "a, b"}, "junk"]),
        encoding="utf-8",
    )
    records, meta = ResourceLoader(intents, tmp_path / "products.json").load_intents()
    assert [record.trigger for record in records] == ["ok"]
    assert meta.count == 1


def test_missing_or_corrupt_files_raise_data_load_error(tmp_path) -> None:
    broken = tmp_path / "broken.json"
    broken.write_text("{oops", encoding="utf-8")
    loader = ResourceLoader(tmp_path / "missing.json", broken)
    with pytest.raises(DataLoadError):
        loader.load_intents()
    with pytest.raises(DataLoadError):
        loader.load_products()
    assert load_or_empty(loader.load_intents, "intents") == ()
