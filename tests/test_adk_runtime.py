from __future__ import annotations

from dataclasses import dataclass, field
from typing import List

from messenger_bot.adk_runtime import AdkAgent, AdkStep


@dataclass
class _Context:
    skip: bool = False
    calls: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def on_step_error(self, step: str, exc: Exception) -> None:
        self.errors.append(f"{step}:{exc}")


async def test_failing_step_does_not_stop_later_steps() -> None:
    async def ok(context):
        context.calls.append("ok")

    async def boom(context):
        raise RuntimeError("boom")

    async def after(context):
        context.calls.append("after")

    context = _Context()
    await AdkAgent([AdkStep("ok", ok), AdkStep("boom", boom), AdkStep("after", after)]).run(context)
    assert context.calls == ["ok", "after"]
    assert context.errors == ["boom:boom"]


async def test_skip_if_and_always_run() -> None:
    async def record(name):
        async def _step(context):
            context.calls.append(name)

        return _step

    skipped = await record("skipped")
    finalize = await record("finalize")
    context = _Context(skip=True)
    steps = [
        AdkStep("skipped", skipped, skip_if=lambda ctx: ctx.skip),
        AdkStep("finalize", finalize, skip_if=lambda ctx: ctx.skip, always_run=True),
    ]
    await AdkAgent(steps).run(context)
    assert context.calls == ["finalize"]
