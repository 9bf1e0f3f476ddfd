from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, List, Optional

import pytest

from messenger_bot.config import BASE_DIR
from messenger_bot.models import IntentRecord, IntentReply
from messenger_bot.prompt_composer import ModelRequest
from messenger_bot.resource_loader import ResourceLoader


class FakeModel:
    """Scripted stand-in for the model/embedding capability."""

    def __init__(
        self,
        answer: str = "Here is some advice.",
        vector: Optional[List[float]] = None,
        generate_error: Optional[Exception] = None,
        embed_error: Optional[Exception] = None,
    ) -> None:
        self.answer = answer
        self.vector = vector or [1.0, 0.0, 0.0]
        self.generate_error = generate_error
        self.embed_error = embed_error
        self.requests: List[ModelRequest] = []
        self.embedded: List[str] = []

    async def generate(self, request: ModelRequest) -> str:
        self.requests.append(request)
        if self.generate_error is not None:
            raise self.generate_error
        return self.answer

    async def embed(self, text: str) -> List[float]:
        self.embedded.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        return list(self.vector)


class FakeClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_model() -> FakeModel:
    return FakeModel()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def packaged_data():
    loader = ResourceLoader(BASE_DIR / "data" / "intents.json", BASE_DIR / "data" / "products.json")
    intents, _ = loader.load_intents()
    products, _ = loader.load_products()
    return intents, products


@pytest.fixture
def simple_intents() -> List[IntentRecord]:
    return [
        IntentRecord(
            trigger="offers",
            keywords=("عروض", "خصم", "discount"),
            examples=("في عروض؟",),
            reply=IntentReply(title="Current offers", highlights=("Bundle A", "Bundle B")),
        ),
        IntentRecord(
            trigger="safety",
            keywords=("امان", "مرخص", "safe"),
            reply=IntentReply(title="Safety", description="Licensed by the health ministry."),
        ),
    ]


@pytest.fixture
def write_kb(tmp_path: Path) -> Callable[..., Path]:
    def _write(docs: list, dims: Optional[int] = None, name: str = "kb_index.json") -> Path:
        payload = {"model": "text-embedding-004", "docs": docs}
        if dims is not None:
            payload["dims"] = dims
        path = tmp_path / name
        path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        return path

    return _write
