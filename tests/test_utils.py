from __future__ import annotations

import pytest

from messenger_bot.utils import (
    contains_any,
    detect_language,
    mask_user_id,
    normalize_key,
    normalize_text,
    prepare_embedding_text,
    token_variants,
    tokenize,
)


@pytest.mark.parametrize(
    "raw",
    [
        "هل المنتج آمِن؟؟",
        "  Hello,   WORLD!! ",
        "عمرها ٥ سنين",
        "شـــعر",
        "Café crème",
        "𝐇𝐞𝐥𝐥𝐨 ℌi",
        "",
    ],
)
def test_normalize_text_is_idempotent(raw: str) -> None:
    once = normalize_text(raw)
    assert normalize_text(once) == once


def test_normalize_text_folds_styled_letters() -> None:
    assert normalize_text("𝐇𝐞𝐥𝐥𝐨 ℌi") == "hello hi"


def test_normalize_text_folds_arabic_variants() -> None:
    assert normalize_text("أمان") == normalize_text("امان") == "امان"
    assert normalize_text("إيه") == "ايه"
    assert normalize_text("سلامة") == "سلامه"
    assert normalize_text("مستشفى") == "مستشفي"
    assert normalize_text("مُرَخَّص") == "مرخص"


def test_normalize_text_strips_tatweel_punctuation_and_spaces() -> None:
    assert normalize_text("شـــعر،  ناعم!!") == "شعر ناعم"
    assert normalize_text("Hi,\tthere\n") == "hi there"


def test_normalize_text_maps_arabic_indic_digits() -> None:
    assert normalize_text("عمره ٧ سنين") == "عمره 7 سنين"
    assert normalize_text("۳ شهور") == "3 شهور"


def test_embedding_text_matches_normalized_text() -> None:
    raw = "شعر بنتي منفوش جدًا!"
    assert prepare_embedding_text(raw) == normalize_text(raw)


def test_tokenize_and_key() -> None:
    assert tokenize("Leave-in  Cream") == ["leave", "in", "cream"]
    assert normalize_key("Product Name") == "productname"


def test_detect_language() -> None:
    assert detect_language("عايزة شامبو") == "ar"
    assert detect_language("need a shampoo") == "en"
    assert detect_language("") == "en"


def test_contains_any_short_terms_need_whole_tokens() -> None:
    assert contains_any("hi there", ["hi"])
    assert not contains_any("this is it", ["hi"])
    assert contains_any("الشعر ناشف", ["شعر"])
    assert contains_any("وشعره طويل", ["hair", "شعره"])
    assert contains_any("شعرها بيقع كتير", ["شعر"])
    assert contains_any("لشعرك", ["شعر"])
    assert not contains_any("hers", ["her"])


def test_contains_any_matches_hamza_spellings() -> None:
    assert contains_any(normalize_text("هل المنتج امان"), ["أمان"])
    assert not contains_any("", ["أمان"])


def test_mask_user_id() -> None:
    assert mask_user_id("1234567890") == "***890"
    assert mask_user_id("12") == "***"
    assert mask_user_id(None) == ""


def test_token_variants_strip_proclitics_and_pronoun_suffixes() -> None:
    assert "شعر" in token_variants("شعرها")
    assert "شعر" in token_variants("لشعري")
    assert "شعرها" in token_variants("وشعرها")
    assert token_variants("hers") == ["hers"]
    assert token_variants("شه") == ["شه"]
