from __future__ import annotations

from pathlib import Path

from messenger_bot.agent_pipeline import RouterConfig
from messenger_bot.config import BASE_DIR, load_settings
from messenger_bot.prompt_loader import load_prompt, render_prompt


def test_defaults(monkeypatch) -> None:
    names = (
        "INTENT_MATCH_THRESHOLD",
        "MAX_ASK_COUNT",
        "ASK_COOLDOWN_SEC",
        "MAX_HISTORY_TURNS",
        "SESSION_TTL_SEC",
        "PROMPTS_DIR",
    )
    for name in names:
        monkeypatch.delenv(name, raising=False)
    settings = load_settings()
    assert settings.intent_match_threshold == 0.32
    assert settings.max_ask_count == 2
    assert settings.ask_cooldown_sec == 60.0
    assert settings.max_history_turns == 6
    assert settings.session_ttl_sec == 3600.0
    assert settings.prompts_dir == (BASE_DIR / "prompts").resolve()


def test_environment_overrides(monkeypatch, tmp_path) -> None:
    monkeypatch.setenv("INTENT_MATCH_THRESHOLD", "0.2")
    monkeypatch.setenv("INTENT_REQUIRE_KEYWORD", "yes")
    monkeypatch.setenv("KB_INDEX_PATH", str(tmp_path / "kb.json"))
    settings = load_settings()
    assert settings.intent_match_threshold == 0.2
    assert settings.intent_require_keyword is True
    assert settings.kb_index_path == Path(tmp_path / "kb.json")

    config = RouterConfig.from_settings(settings)
    assert config.intent_match_threshold == 0.2
    assert config.intent_require_keyword is True


def test_load_prompt_strips_bom_and_uses_default(tmp_path) -> None:
    prompt = tmp_path / "persona.txt"
    prompt.write_text("\ufeffYou are Mona.\n", encoding="utf-8")
    assert load_prompt(prompt) == "You are Mona."
    assert load_prompt(tmp_path / "missing.txt", "fallback") == "fallback"


def test_render_prompt_replaces_placeholders() -> None:
    assert render_prompt("At most <<MAX_STEPS>> steps.", max_steps=3) == "At most 3 steps."
