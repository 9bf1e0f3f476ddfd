from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for models, data files, and dialogue limits."""
    gemini_api_key: str
    gemini_model: str
    gemini_embed_model: str
    max_output_tokens: int
    model_timeout_sec: float
    embed_timeout_sec: float
    kb_index_path: Path
    intents_path: Path
    products_path: Path
    prompts_dir: Path
    kb_top_k: int
    kb_min_similarity: float
    catalog_top_n: int
    intent_match_threshold: float
    intent_require_keyword: bool
    small_talk_max_chars: int
    session_ttl_sec: float
    session_sweep_sec: float
    max_history_turns: int
    max_ask_count: int
    ask_cooldown_sec: float
    max_context_chars: int
    verify_token: str
    page_access_token: str
    graph_api_version: str
    delivery_delay_sec: float


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw:
        return Path(raw)
    return default.resolve()


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables and filesystem paths.
    Dependencies: Uses os.getenv and BASE_DIR for default data/prompt paths.
    Failure Modes: Non-numeric values for numeric env vars raise ValueError.
        A missing GEMINI_API_KEY is not an error here; the client reports it.
    If Removed: Thresholds, data paths, and tokens cannot be configured.
    Testing Notes: Verify defaults and overrides via monkeypatched environment.
    """
    # Resolve data paths next to the package unless overridden.
    data_dir = BASE_DIR / "data"
    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model=os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        gemini_embed_model=os.getenv("GEMINI_EMBED_MODEL", "models/text-embedding-004"),
        max_output_tokens=int(os.getenv("MAX_OUTPUT_TOKENS", "600")),
        model_timeout_sec=float(os.getenv("MODEL_TIMEOUT_SEC", "30")),
        embed_timeout_sec=float(os.getenv("EMBED_TIMEOUT_SEC", "10")),
        kb_index_path=_env_path("KB_INDEX_PATH", data_dir / "kb_index.json"),
        intents_path=_env_path("INTENTS_PATH", data_dir / "intents.json"),
        products_path=_env_path("PRODUCTS_PATH", data_dir / "products.json"),
        prompts_dir=_env_path("PROMPTS_DIR", BASE_DIR / "prompts"),
        kb_top_k=int(os.getenv("KB_TOP_K", "4")),
        kb_min_similarity=float(os.getenv("KB_MIN_SIMILARITY", "0.35")),
        catalog_top_n=int(os.getenv("CATALOG_TOP_N", "3")),
        intent_match_threshold=float(os.getenv("INTENT_MATCH_THRESHOLD", "0.32")),
        intent_require_keyword=_env_bool("INTENT_REQUIRE_KEYWORD", False),
        small_talk_max_chars=int(os.getenv("SMALL_TALK_MAX_CHARS", "40")),
        session_ttl_sec=float(os.getenv("SESSION_TTL_SEC", str(60 * 60))),
        session_sweep_sec=float(os.getenv("SESSION_SWEEP_SEC", "300")),
        max_history_turns=int(os.getenv("MAX_HISTORY_TURNS", "6")),
        max_ask_count=int(os.getenv("MAX_ASK_COUNT", "2")),
        ask_cooldown_sec=float(os.getenv("ASK_COOLDOWN_SEC", "60")),
        max_context_chars=int(os.getenv("MAX_CONTEXT_CHARS", "0")),
        verify_token=os.getenv("VERIFY_TOKEN", ""),
        page_access_token=os.getenv("PAGE_ACCESS_TOKEN", ""),
        graph_api_version=os.getenv("GRAPH_API_VERSION", "v17.0"),
        delivery_delay_sec=float(os.getenv("DELIVERY_DELAY_SEC", "0.6")),
    )
