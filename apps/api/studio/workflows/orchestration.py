"""
Orchestration strategies and the progress stream adapter.

Two strategies share one external contract:

- ``planner``: the backend (or the keyword fallback) plans a task graph up
  front and the executor runs it.
- ``agent_loop``: the backend picks each tool as it goes.

``run_orchestration`` drives either one and turns its callbacks into an
ordered stream of ProgressEvents whose progress never decreases and which
ends with exactly one ``complete`` or ``error`` event carrying the final
OrchestrationResult.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, List, Optional, Sequence

from ..agents.agent_loop import AgentLoop
from ..agents.executor import AgentSet, EventCallback, TaskExecutor, build_agents, emit_event
from ..agents.planner import Planner
from ..agents.types import OrchestrationState, RunOutcome, TaskResult, new_orchestration_state
from ..core.config import settings
from ..llm_backend import GenerationBackend
from ..llm_retry import OrchestrationError
from ..memory.context_memory import ContextMemoryStore
from ..middleware.metrics import track_run_completed
from ..models import OrchestrationResult, OrchestrationStrategyName, ProgressEvent, ProgressPhase
from ..schemas import BrandConstitution, CanvasElement
from ..storage import ImageStore

logger = logging.getLogger(__name__)

PARSING_PROGRESS = 5
PLANNING_PROGRESS = 15

NOTHING_TO_DO = "Nothing to do: the request did not match any agent task"


def synthesize_results(results: Sequence[TaskResult], state: OrchestrationState) -> RunOutcome:
    """Summarize executed tasks. Non-critical failures are listed but do not fail the run."""
    if state.abort_reason:
        return RunOutcome(success=False, message=state.abort_reason, task_results=list(results))

    failures = [r for r in results if not r.success]
    if not failures:
        return RunOutcome(
            success=True,
            message="All agent tasks completed successfully",
            task_results=list(results),
        )

    summary = ", ".join(f"{r.role.value}: {r.error}" for r in failures)
    return RunOutcome(
        success=True,
        message=f"Completed {len(results) - len(failures)} of {len(results)} agent tasks. Failed: {summary}",
        task_results=list(results),
    )


class OrchestrationStrategy(ABC):
    """Turns a prompt into a finished run, reporting progress through ``on_event``."""

    name: str

    @abstractmethod
    async def run(
        self,
        prompt: str,
        state: OrchestrationState,
        on_event: EventCallback,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunOutcome:
        """Run to completion.

        Raises:
            OrchestrationError: when the run cannot proceed at all
        """


class PlannerStrategy(OrchestrationStrategy):
    """Static plan, dependency-ordered execution."""

    name = OrchestrationStrategyName.planner.value

    def __init__(self, backend: GenerationBackend, agents: AgentSet, max_concurrency: Optional[int] = None):
        self.planner = Planner(backend)
        self.executor = TaskExecutor(agents, max_concurrency=max_concurrency)

    async def run(self, prompt, state, on_event, cancel_event=None) -> RunOutcome:
        await emit_event(on_event, ProgressEvent(
            phase=ProgressPhase.parsing,
            progress=PARSING_PROGRESS,
            message="Understanding your request...",
            thinking="Analyzing user intent and determining required agents",
        ))

        plan = await self.planner.plan(prompt, state)
        queue = " -> ".join(t.role.value for t in plan.tasks) or "(empty)"
        await emit_event(on_event, ProgressEvent(
            phase=ProgressPhase.planning,
            progress=PLANNING_PROGRESS,
            message=f"Planned {len(plan.tasks)} task(s)",
            thinking=plan.thinking or f"Task queue ({plan.source}): {queue}",
        ))

        if not plan.tasks:
            return RunOutcome(success=True, message=NOTHING_TO_DO)

        results = await self.executor.execute(plan.tasks, state, on_event, cancel_event)
        return synthesize_results(results, state)


class AgentLoopStrategy(OrchestrationStrategy):
    """Backend-driven tool loop."""

    name = OrchestrationStrategyName.agent_loop.value

    def __init__(
        self,
        backend: GenerationBackend,
        agents: AgentSet,
        memory_store: Optional[ContextMemoryStore] = None,
        max_iterations: Optional[int] = None,
    ):
        self.loop = AgentLoop(backend, agents, memory_store=memory_store, max_iterations=max_iterations)

    async def run(self, prompt, state, on_event, cancel_event=None) -> RunOutcome:
        await emit_event(on_event, ProgressEvent(
            phase=ProgressPhase.parsing,
            progress=PARSING_PROGRESS,
            message="Agent starting...",
        ))
        return await self.loop.run(prompt, state, on_event, cancel_event)


def build_strategy(
    name: Optional[str],
    backend: GenerationBackend,
    memory_store: Optional[ContextMemoryStore] = None,
) -> OrchestrationStrategy:
    """Build the named strategy (ORCHESTRATION_STRATEGY when None)."""
    name = name or settings.ORCHESTRATION_STRATEGY
    if name == OrchestrationStrategyName.agent_loop.value:
        agents = build_agents(backend, memory_store, pass_threshold=settings.AGENT_LOOP_PASS_THRESHOLD)
        return AgentLoopStrategy(backend, agents, memory_store=memory_store)
    if name == OrchestrationStrategyName.planner.value:
        agents = build_agents(backend, memory_store, pass_threshold=settings.AUDIT_PASS_THRESHOLD)
        return PlannerStrategy(backend, agents)
    raise ValueError(f"Unknown orchestration strategy '{name}'")


class RunRegistry:
    """Cancellation handles for in-flight runs, keyed by run id."""

    def __init__(self):
        self._runs: Dict[str, asyncio.Event] = {}

    def register(self, run_id: str) -> asyncio.Event:
        event = asyncio.Event()
        self._runs[run_id] = event
        return event

    def cancel(self, run_id: str) -> bool:
        event = self._runs.get(run_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for run {run_id}")
        return True

    def unregister(self, run_id: str) -> None:
        self._runs.pop(run_id, None)

    def active(self) -> List[str]:
        return list(self._runs)


_DONE = object()


async def run_orchestration(
    prompt: str,
    canvas_elements: Optional[Sequence[CanvasElement]],
    saved_constitution: Optional[BrandConstitution] = None,
    *,
    strategy: OrchestrationStrategy,
    image_store: Optional[ImageStore] = None,
    cancel_event: Optional[asyncio.Event] = None,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    brand_id: Optional[str] = None,
) -> AsyncIterator[ProgressEvent]:
    """
    Run one request and stream its progress.

    Args:
        prompt: The user's request
        canvas_elements: Moodboard contents
        saved_constitution: Constitution from an earlier session, if any
        strategy: How tasks are chosen
        image_store: When given, the final image is stored there and only its id is reported
        cancel_event: Set by the caller to stop dispatching new work

    Yields:
        Non-terminal events with non-decreasing progress below 100, then
        exactly one terminal event whose ``result`` is the OrchestrationResult
    """
    started = time.monotonic()
    state = new_orchestration_state(canvas_elements, saved_constitution, session_id, user_id, brand_id)
    cancel_event = cancel_event or asyncio.Event()
    queue: asyncio.Queue = asyncio.Queue()

    async def drive():
        try:
            return await strategy.run(prompt, state, queue.put_nowait, cancel_event)
        finally:
            queue.put_nowait(_DONE)

    runner = asyncio.ensure_future(drive())
    last_progress = 0
    held_error: Optional[ProgressEvent] = None

    try:
        while True:
            item = await queue.get()
            if item is _DONE:
                break
            event: ProgressEvent = item
            if event.is_terminal:
                # Terminal decisions are made once the strategy has returned
                if event.phase == ProgressPhase.error:
                    held_error = event
                continue
            last_progress = max(last_progress, min(event.progress, 99))
            yield event.model_copy(update={"progress": last_progress})

        outcome = await _collect(runner)
        result = await _finalize(outcome, state, started, image_store)

        if cancel_event.is_set():
            status = "cancelled"
        else:
            status = "success" if result.success else "failure"
        track_run_completed(strategy.name, status, result.duration_ms / 1000)
        logger.info(
            f"Run {state.session_id} finished via {strategy.name}: {status} "
            f"({len(result.task_results)} tasks, {result.duration_ms}ms)"
        )

        if result.success:
            yield ProgressEvent(phase=ProgressPhase.complete, progress=100, message=result.message, result=result)
        else:
            yield ProgressEvent(
                phase=ProgressPhase.error,
                progress=last_progress,
                message=result.message,
                agent_role=held_error.agent_role if held_error else None,
                result=result,
            )
    finally:
        if not runner.done():
            cancel_event.set()
            runner.cancel()


async def _collect(runner: asyncio.Future) -> RunOutcome:
    """Turn the strategy's return value or exception into a RunOutcome."""
    try:
        return await runner
    except OrchestrationError as e:
        logger.error(f"Orchestration failed ({e.kind}): {e}")
        return RunOutcome(success=False, message=str(e))
    except Exception as e:
        logger.error(f"Unexpected orchestration error: {e}", exc_info=True)
        return RunOutcome(success=False, message=f"Orchestration failed: {e}")


async def _finalize(
    outcome: RunOutcome,
    state: OrchestrationState,
    started: float,
    image_store: Optional[ImageStore],
) -> OrchestrationResult:
    success = outcome.success
    message = outcome.message
    if not success and state.has_current_image:
        # An image already exists: report it rather than the failure
        success = True
        message = f"Generated image successfully. The run stopped early: {outcome.message}"

    image_id = None
    image = state.current_image
    if image and image_store is not None:
        image_id = await image_store.put(image, state.current_image_mime_type or "image/png")

    return OrchestrationResult(
        success=success,
        message=message,
        image=image,
        image_mime_type=state.current_image_mime_type if image else None,
        image_id=image_id,
        prompt=state.current_prompt,
        constitution=state.constitution,
        audit=state.last_audit,
        task_results=[r.to_dict() for r in outcome.task_results],
        duration_ms=int((time.monotonic() - started) * 1000),
    )
