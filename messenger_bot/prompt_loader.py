from __future__ import annotations

from functools import lru_cache
from pathlib import Path


@lru_cache(maxsize=32)
def load_prompt(prompt_path: Path, default: str = "") -> str:
    """Purpose: Load a prompt file as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path and a default; output is the decoded string, or
        the default when the file does not exist.
    Side Effects / State: Caches file contents per path for the process lifetime.
    Dependencies: Uses Path.read_text/read_bytes; used by the router for the persona
        and per-route instructions.
    Failure Modes: UnicodeDecodeError triggers a tolerant decode that may drop bytes.
    If Removed: Persona and route instructions cannot be edited without code changes.
    Testing Notes: Validate BOM stripping and the default for a missing file.
    """
    if not prompt_path.exists():
        return default
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff").strip()
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        return raw.decode("utf-8", errors="ignore").lstrip("\ufeff").strip()


def render_prompt(template: str, **values: object) -> str:
    """Replace <<KEY>> placeholders with the given values."""
    rendered = template
    for key, value in values.items():
        rendered = rendered.replace(f"<<{key.upper()}>>", str(value))
    return rendered
