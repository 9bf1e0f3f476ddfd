from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("messenger_bot.runtime")


@dataclass
class AdkStep:
    """Step descriptor for the async pipeline runner."""
    name: str
    fn: Callable[[object], Awaitable[None]]
    skip_if: Optional[Callable[[object], bool]] = None
    always_run: bool = False


class AdkAgent:
    """Ordered async step runner that isolates step failures."""

    def __init__(self, steps: list[AdkStep]) -> None:
        """Purpose: Initialize the agent with an ordered list of steps.
        Inputs/Outputs: Input is a list of AdkStep; no return value.
        Side Effects / State: Stores the step list for later execution.
        Dependencies: None beyond AdkStep definitions.
        Failure Modes: None; assumes valid coroutine functions in steps.
        If Removed: Router steps are never executed.
        Testing Notes: Provide a minimal step list and ensure order is preserved.
        """
        self._steps = steps

    async def run(self, context: object) -> None:
        """Purpose: Execute steps in order with skip/always-run rules.
        Inputs/Outputs: Input is a mutable context object; no return value.
        Side Effects / State: Awaits step functions that mutate context. A step that
            raises is logged, recorded through context.on_step_error when present,
            and the run continues with the next step.
        Dependencies: AdkStep.fn and AdkStep.skip_if semantics.
        Failure Modes: Never raises for step errors; cancellation propagates.
        If Removed: The router cannot run, and one failing sub-step would abort a turn.
        Testing Notes: A raising step does not stop later steps; always_run steps run
            even when skip_if would skip them.
        """
        for step in self._steps:
            if not step.always_run and step.skip_if and step.skip_if(context):
                continue
            try:
                await step.fn(context)
            except Exception as exc:
                logger.exception("step=%s status=error", step.name)
                handler = getattr(context, "on_step_error", None)
                if handler is not None:
                    handler(step.name, exc)
