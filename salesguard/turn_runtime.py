from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional

logger = logging.getLogger("salesguard.runtime")


@dataclass
class TurnStep:
    """Named async step for the per-turn pipeline."""
    name: str
    fn: Callable[[Any], Awaitable[None]]
    skip_if: Optional[Callable[[Any], bool]] = None
    always_run: bool = False


class TurnPipeline:
    """Ordered async step runner with skip and always-run rules."""

    def __init__(self, steps: List[TurnStep]) -> None:
        self._steps = steps

    @property
    def step_names(self) -> List[str]:
        return [step.name for step in self._steps]

    async def run(self, context: Any) -> List[str]:
        """Purpose: Execute steps in order, honoring skip_if and always_run.
        Inputs/Outputs: Input is a mutable turn context; returns the names of the
            steps that ran.
        Side Effects / State: Step functions mutate the context.
        Dependencies: TurnStep.fn and TurnStep.skip_if.
        Failure Modes: The first failing step stops ordinary steps; always_run steps
            still execute, then the first exception propagates.
        If Removed: Turns cannot be processed.
        Testing Notes: Verify a skipped step and a finalizer that runs after a failure.
        """
        # Remember the first failure so always_run steps can still clean up.
        ran: List[str] = []
        failure: Optional[BaseException] = None
        for step in self._steps:
            if failure is not None and not step.always_run:
                continue
            if not step.always_run and step.skip_if and step.skip_if(context):
                logger.debug("step skipped name=%s", step.name)
                continue
            try:
                await step.fn(context)
                ran.append(step.name)
            except Exception as exc:
                if failure is not None:
                    logger.exception("step failed after earlier failure name=%s", step.name)
                    continue
                failure = exc
        if failure is not None:
            raise failure
        return ran
