"""Keyword vocabularies consumed by routing and slot extraction.

Terms are written in their natural spelling; every consumer normalizes them with
normalize_text before comparing, so hamza/teh-marbuta variants do not matter here.
"""

from __future__ import annotations

from typing import Dict, List, Tuple

SMALL_TALK_TERMS: List[str] = [
    # greetings
    "السلام عليكم",
    "سلام عليكم",
    "اهلا",
    "أهلاً",
    "مرحبا",
    "هاي",
    "صباح الخير",
    "مساء الخير",
    "hi",
    "hello",
    "hey",
    "good morning",
    "good evening",
    # thanks
    "شكرا",
    "متشكر",
    "متشكرة",
    "تسلم",
    "thanks",
    "thank you",
    "thx",
    # farewell
    "مع السلامة",
    "باي",
    "bye",
    "see you",
    # how are you
    "ازيك",
    "عامل ايه",
    "عاملة ايه",
    "اخبارك",
    "how are you",
]

DOMAIN_TERMS: List[str] = [
    "شعر",
    "فروة",
    "بشرة",
    "شامبو",
    "بلسم",
    "كريم",
    "ليف ان",
    "زيت",
    "شاور",
    "هيشان",
    "تقصف",
    "تساقط",
    "قشرة",
    "جفاف",
    "تشابك",
    "كيرلي",
    "مجعد",
    "ناعم",
    "خشن",
    "حساسية",
    "اكزيما",
    "hair",
    "scalp",
    "skin",
    "shampoo",
    "conditioner",
    "leave in",
    "oil",
    "frizz",
    "curly",
    "dandruff",
    "dry",
    "tangle",
]

# Families used by the catalog ranker for additive boosts.
HAIR_FAMILY: List[str] = ["شعر", "فروة", "شامبو", "ليف ان", "بلسم", "hair", "scalp", "shampoo"]
CHILD_FAMILY: List[str] = ["اطفال", "طفل", "طفلي", "بنتي", "ابني", "رضيع", "بيبي", "kids", "child", "baby"]

AGE_UNITS: Dict[str, str] = {
    "سنه": "years",
    "سنين": "years",
    "سنوات": "years",
    "سنتين": "years",
    "عام": "years",
    "اعوام": "years",
    "years": "years",
    "year": "years",
    "yrs": "years",
    "yo": "years",
    "شهر": "months",
    "شهور": "months",
    "اشهر": "months",
    "months": "months",
    "month": "months",
}

AGE_CUES: List[str] = ["عمره", "عمرها", "سنه", "سنها", "age", "aged"]

HAIR_TYPE_TERMS: Dict[str, Tuple[str, ...]] = {
    "curly": ("كيرلي", "مجعد", "مموج", "curly", "wavy"),
    "straight": ("سايح", "ناعم", "مفرود", "straight", "silky"),
    "coarse": ("خشن", "تقيل", "coarse", "thick"),
}

CONCERN_TERMS: Dict[str, Tuple[str, ...]] = {
    "frizz": ("هيشان", "منفوش", "frizz", "frizzy"),
    "dryness": ("جفاف", "ناشف", "جاف", "dry", "dryness"),
    "breakage": ("تقصف", "تكسر", "بيتقصف", "breakage", "split ends"),
    "dandruff": ("قشرة", "قشره", "dandruff", "flakes"),
    "shedding": ("تساقط", "بيقع", "وقوع", "shedding", "hair fall", "hair loss"),
}

AUDIENCE_TERMS: Dict[str, Tuple[str, ...]] = {
    "baby": ("رضيع", "بيبي", "مولود", "baby", "infant", "newborn"),
    "girl": ("بنتي", "بنت", "daughter", "girl"),
    "boy": ("ابني", "ولد", "son", "boy"),
    "child": ("طفلي", "طفل", "اطفال", "kid", "child", "kids"),
}

SLOT_PRIORITY: Tuple[str, ...] = ("age", "hairType", "concern")
SLOT_KEYS: Tuple[str, ...] = ("age", "hairType", "concern", "audience")

CLARIFYING_QUESTIONS: Dict[str, Dict[str, str]] = {
    "age": {
        "ar": "ممكن أعرف سن طفلك كام؟",
        "en": "How old is your child?",
    },
    "hairType": {
        "ar": "شعر طفلك كيرلي ولا سايح ولا خشن؟",
        "en": "Is your child's hair curly, straight, or coarse?",
    },
    "concern": {
        "ar": "إيه أكتر مشكلة مضايقاكي في الشعر: هيشان، جفاف، تقصف، قشرة ولا تساقط؟",
        "en": "What's the main concern: frizz, dryness, breakage, dandruff, or shedding?",
    },
}
