import re
import unicodedata
from typing import List

ARABIC_DIACRITICS_RE = re.compile(r"[\u0610-\u061a\u064b-\u065f\u0670\u06d6-\u06ed\u0640]")
ARABIC_SCRIPT_RE = re.compile(r"[\u0600-\u06ff\u0750-\u077f]")
NON_WORD_RE = re.compile(r"[^\w\s]+", re.UNICODE)
WHITESPACE_RE = re.compile(r"\s+")

LETTER_FOLDS = str.maketrans(
    {
        "أ": "ا",
        "إ": "ا",
        "آ": "ا",
        "ٱ": "ا",
        "ى": "ي",
        "ئ": "ي",
        "ی": "ي",
        "ؤ": "و",
        "ة": "ه",
        "ک": "ك",
        "_": " ",
    }
)

DIGIT_FOLDS = str.maketrans("٠١٢٣٤٥٦٧٨٩۰۱۲۳۴۵۶۷۸۹", "01234567890123456789")


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form text for stable matching across the pipeline.
    Inputs/Outputs: Input is a raw string; output is lowercase text with Arabic
        diacritics and tatweel removed, letter variants folded (alif, yeh, waw,
        teh marbuta), Arabic-Indic digits mapped to ASCII, punctuation removed,
        and whitespace collapsed.
    Side Effects / State: None; pure and idempotent.
    Dependencies: Uses unicodedata and regex; called by intent matching, slot
        extraction, catalog ranking, routing, and the embedding query path.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Matching becomes sensitive to spelling variants and the query text
        sent for embedding diverges from the text the index was built from.
    Testing Notes: normalize_text(normalize_text(x)) == normalize_text(x); "أمان"
        and "امان" normalize to the same string.
    """
    # Compatibility forms decompose to uppercase ASCII, so case folding comes after NFKD.
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", unicodedata.normalize("NFKD", text).casefold())
    stripped = "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")
    recomposed = unicodedata.normalize("NFC", stripped)
    folded = ARABIC_DIACRITICS_RE.sub("", recomposed)
    folded = folded.translate(LETTER_FOLDS).translate(DIGIT_FOLDS)
    cleaned = NON_WORD_RE.sub(" ", folded)
    return WHITESPACE_RE.sub(" ", cleaned).strip()


def normalize_key(text: str) -> str:
    """Purpose: Produce a compact normalization key without spaces.
    Inputs/Outputs: Input is a raw string; output is normalized string with spaces removed.
    Side Effects / State: None; pure function.
    Dependencies: Calls normalize_text; used for field-name lookups in data files.
    Failure Modes: Returns empty string for falsy input.
    If Removed: Data loaders lose tolerant key matching for record fields.
    Testing Notes: Ensure spaces are removed after normalization.
    """
    return normalize_text(text).replace(" ", "")


def tokenize(text: str) -> List[str]:
    """Split text into normalized whitespace tokens."""
    return [token for token in normalize_text(text).split() if token]


def prepare_embedding_text(text: str) -> str:
    """Text sent to the embedding capability, shared by query and index build."""
    return normalize_text(text)


def detect_language(text: str) -> str:
    """Return "ar" when the text contains Arabic script, otherwise "en"."""
    if text and ARABIC_SCRIPT_RE.search(text):
        return "ar"
    return "en"


def contains_any(normalized: str, terms) -> bool:
    """Purpose: Check whether any normalized term occurs in normalized text.
    Inputs/Outputs: Inputs are normalized text and an iterable of raw terms; output
        is True on the first hit. Terms of up to three characters must equal a whole
        token (optionally after one Arabic proclitic such as "ال" and one
        pronoun suffix such as "ها" are removed);
        longer or multi-word terms match as substrings.
    Side Effects / State: None.
    Dependencies: Uses normalize_text on each term so vocabularies can stay readable.
    Failure Modes: Empty text returns False.
    If Removed: Small-talk and domain detection lose their shared membership test.
    Testing Notes: Terms written with hamza should match text written without it;
        "شعر" matches "الشعر" and "شعرها" but "hi" does not match "this".
    """
    if not normalized:
        return False
    tokens = None
    for term in terms:
        key = normalize_text(term)
        if not key:
            continue
        if " " in key or len(key) > 3:
            if key in normalized:
                return True
            continue
        if tokens is None:
            tokens = {variant for token in normalized.split() for variant in token_variants(token)}
        if key in tokens:
            return True
    return False


def mask_user_id(value: object) -> str:
    """Mask a platform user id for logging, keeping the last three characters."""
    if value is None:
        return ""
    raw = str(value)
    if len(raw) < 4:
        return "***"
    return "***" + raw[-3:]


ARABIC_PROCLITICS = ("وبال", "فال", "بال", "كال", "وال", "لل", "ال", "و", "ب", "ل", "ف")
ARABIC_PRONOUN_SUFFIXES = ("هما", "كم", "هم", "ها", "نا", "ه", "ي", "ك")


def token_variants(token: str) -> List[str]:
    """Return the token plus forms with one leading proclitic and/or one trailing
    pronoun suffix removed, so "لشعرها" also yields "شعرها" and "شعر".
    """
    stems = [token]
    for prefix in ARABIC_PROCLITICS:
        if token.startswith(prefix) and len(token) - len(prefix) >= 2:
            stems.append(token[len(prefix):])
    variants = list(stems)
    if ARABIC_SCRIPT_RE.search(token):
        for stem in stems:
            for suffix in ARABIC_PRONOUN_SUFFIXES:
                if stem.endswith(suffix) and len(stem) - len(suffix) >= 2:
                    variants.append(stem[: -len(suffix)])
    return list(dict.fromkeys(variants))
