"""Pipeline runner: an ordered phase list executed by a small loop.

Flow:
start → phase_1 → ... → phase_n → complete
  any phase raising  ↘  error

Each phase is an async callable that mutates the run state and returns
the snapshot to write as its audit checkpoint. The runner is the only
place a raised exception becomes the terminal ``error`` phase.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

from repoagent.database.sink import PersistenceSink
from repoagent.schemas import PipelineState, RunError


logger = logging.getLogger(__name__)

S = TypeVar("S", bound=PipelineState)

PhaseFn = Callable[[S], Awaitable["dict[str, Any] | None"]]

ERROR_PHASE = "error"
COMPLETE_PHASE = "complete"


class StepTimeoutError(Exception):
    """A phase did not finish within the configured timeout."""


@dataclass(frozen=True)
class PipelineStep(Generic[S]):
    """One named phase.

    Attributes:
        name: Phase name written to ``state.phase`` and the audit trail
        run: Coroutine function doing the work; returns the audit snapshot
    """
    name: str
    run: PhaseFn


class PipelineRunner(Generic[S]):
    """Runs phases strictly in declaration order against one run state."""

    def __init__(
        self,
        steps: list[PipelineStep[S]],
        complete: PhaseFn,
        on_error: PhaseFn,
        sink: PersistenceSink,
        step_timeout: float | None = None,
    ):
        self.steps = steps
        self.complete = complete
        self.on_error = on_error
        self.sink = sink
        self.step_timeout = step_timeout

    @property
    def phase_names(self) -> list[str]:
        return [step.name for step in self.steps]

    async def _invoke(self, step: PipelineStep[S], state: S) -> dict[str, Any] | None:
        if not self.step_timeout:
            return await step.run(state)
        try:
            return await asyncio.wait_for(step.run(state), timeout=self.step_timeout)
        except asyncio.TimeoutError as e:
            raise StepTimeoutError(
                f"Phase {step.name} exceeded {self.step_timeout:g}s timeout"
            ) from e

    async def _checkpoint(
        self,
        state: S,
        name: str,
        output: dict[str, Any] | None,
        duration_ms: int,
    ) -> None:
        """Write the audit row for a finished phase; failures are logged only."""
        if not state.execution_id:
            return
        try:
            await self.sink.record_step(
                state.execution_id,
                name,
                output or {},
                status="completed",
                duration_ms=duration_ms,
            )
        except Exception as e:
            logger.warning(f"[{state.execution_id}] Failed to record step {name}: {e}")

    async def _terminal(self, name: str, fn: PhaseFn, state: S) -> None:
        state.phase = name
        state.step_count += 1
        started = time.perf_counter()
        try:
            output = await fn(state)
        except Exception as e:
            logger.warning(f"[{state.execution_id}] Terminal phase {name} could not be recorded: {e}")
            return
        if name == COMPLETE_PHASE:
            await self._checkpoint(state, name, output, int((time.perf_counter() - started) * 1000))

    async def run(self, state: S) -> S:
        """Execute every phase, then exactly one terminal phase.

        Returns:
            The same state object, either completed or carrying ``error``
        """
        for step in self.steps:
            state.phase = step.name
            logger.info(f"[{state.execution_id or '-'}] Starting {step.name}")
            started = time.perf_counter()

            try:
                output = await self._invoke(step, state)
            except Exception as e:
                message = str(e) or type(e).__name__
                logger.error(f"[{state.execution_id or '-'}] Phase {step.name} failed: {message}")
                state.error = RunError(message=message, phase=step.name)
                break

            duration_ms = int((time.perf_counter() - started) * 1000)
            state.step_count += 1
            logger.info(f"[{state.execution_id}] Finished {step.name} in {duration_ms}ms")
            await self._checkpoint(state, step.name, output, duration_ms)

        if state.failed:
            await self._terminal(ERROR_PHASE, self.on_error, state)
        else:
            await self._terminal(COMPLETE_PHASE, self.complete, state)
        return state
