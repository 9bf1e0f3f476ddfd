"""Model request assembly: persona, labeled context blocks, history, user turn."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence

from .models import HistoryTurn

SHAPE_STRUCTURED = "structured"
SHAPE_FLATTENED = "flattened"


@dataclass(frozen=True)
class ContextBlock:
    """Labeled system-level context, e.g. knowledge-base excerpts or catalog summary."""
    label: str
    text: str


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True)
class ModelFamilyHints:
    supports_system_instruction: bool = True
    supports_temperature: bool = True


@dataclass(frozen=True)
class ModelRequest:
    """Provider-neutral completion request."""
    model: str
    system_parts: Sequence[str]
    messages: Sequence[ChatMessage]
    max_output_tokens: int
    temperature: Optional[float] = 0.4
    shape: str = SHAPE_STRUCTURED
    hints: ModelFamilyHints = field(default_factory=ModelFamilyHints)

    @property
    def system_instruction(self) -> Optional[str]:
        if self.shape != SHAPE_STRUCTURED:
            return None
        text = "\n\n".join(part for part in self.system_parts if part)
        return text or None

    @property
    def contents(self) -> List[Dict[str, object]]:
        """Gemini-style contents for the request's shape."""
        if self.shape == SHAPE_FLATTENED:
            return [{"role": "user", "parts": [{"text": flatten_prompt(self)}]}]
        return [
            {"role": "model" if message.role == "assistant" else "user", "parts": [{"text": message.content}]}
            for message in self.messages
        ]

    def flattened(self) -> "ModelRequest":
        """Alternate shape: one user turn with system text and history inlined."""
        return replace(self, shape=SHAPE_FLATTENED)


def model_family_hints(model_name: str) -> ModelFamilyHints:
    """Purpose: Describe request-shape differences between model families.
    Inputs/Outputs: Input is a model name; output is ModelFamilyHints.
    Side Effects / State: None.
    Dependencies: None.
    Failure Modes: Unknown names get full support.
    If Removed: Gemma-family models receive a system instruction and fail every call.
    Testing Notes: "gemma-3-12b-it" does not support system instructions.
    """
    name = (model_name or "").lower().split("/")[-1]
    if name.startswith("gemma"):
        return ModelFamilyHints(supports_system_instruction=False, supports_temperature=True)
    return ModelFamilyHints()


def compose(
    persona: str,
    context_blocks: Sequence[ContextBlock],
    history: Sequence[HistoryTurn],
    user_turn: str,
    max_output_tokens: int,
    model_name: str,
    temperature: Optional[float] = 0.4,
    max_context_chars: int = 0,
) -> ModelRequest:
    """Purpose: Assemble a model request in a fixed order.
    Inputs/Outputs: Inputs are the persona, labeled context blocks, history turns,
        the user turn, output cap, and model name; output is a ModelRequest.
    Side Effects / State: None.
    Dependencies: model_family_hints for the primary shape.
    Failure Modes: None; empty context blocks are skipped.
    If Removed: Every route would hand-build prompts with drifting layouts.
    Testing Notes: Persona is the first system part, context blocks follow in order,
        history is chronological, and the user turn is the last message.
    """
    system_parts: List[str] = [persona.strip()]
    for block in context_blocks:
        text = (block.text or "").strip()
        if not text:
            continue
        if max_context_chars and len(text) > max_context_chars:
            text = text[:max_context_chars].rstrip() + "…"
        system_parts.append(f"### {block.label}\n{text}")

    messages = [ChatMessage(role=turn.role, content=turn.content) for turn in history if turn.content]
    messages.append(ChatMessage(role="user", content=user_turn))

    hints = model_family_hints(model_name)
    return ModelRequest(
        model=model_name,
        system_parts=tuple(system_parts),
        messages=tuple(messages),
        max_output_tokens=max_output_tokens,
        temperature=temperature if hints.supports_temperature else None,
        shape=SHAPE_STRUCTURED if hints.supports_system_instruction else SHAPE_FLATTENED,
        hints=hints,
    )


def flatten_prompt(request: ModelRequest) -> str:
    """Render system parts and role-prefixed messages as one plain-text prompt."""
    parts: List[str] = []
    system = "\n\n".join(part for part in request.system_parts if part)
    if system:
        parts.append(f"SYSTEM:\n{system}")
    for message in request.messages:
        prefix = "ASSISTANT" if message.role == "assistant" else "USER"
        parts.append(f"{prefix}: {message.content}")
    return "\n\n".join(parts)
