"""
Executor: runs a task graph against the specialist agents.

Each pass selects the pending tasks whose dependencies have all completed,
dispatches them, records exactly one TaskResult per task that ran and folds
successful results back into the run state. The run stops early on:

- an invalid graph (duplicate ids, self-loops)
- dependency deadlock (nothing ready while tasks remain)
- failure of a critical role (brand_analyst, creative_director)
- cancellation, checked before every dispatch

Stopping early is not an exception: the results gathered so far are returned,
one ``error`` progress event is emitted and ``state.abort_reason`` is set.
"""

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Set, Union

from ..core.config import settings
from ..llm_backend import GenerationBackend
from ..memory.context_memory import ContextMemoryStore
from ..middleware.metrics import track_task_result
from ..models import ProgressEvent, ProgressPhase
from ..schemas import AuditResult, BrandConstitution
from .brand_analyst import BrandAnalystAgent
from .compliance_auditor import ComplianceAuditorAgent
from .context_memory import ContextMemoryAgent
from .creative_director import CreativeDirectorAgent
from .export_optimizer import ExportOptimizerAgent, apply_template
from .trend_scout import TrendScoutAgent
from .types import CRITICAL_ROLES, AgentOutcome, AgentRole, OrchestrationState, Task, TaskResult

logger = logging.getLogger(__name__)

EventCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]

EXECUTING_START = 15
EXECUTING_SPAN = 75


def executing_progress(done: int, total: int) -> int:
    """Progress for the executing phase: 15..90, non-decreasing in ``done``."""
    if total <= 0:
        return EXECUTING_START + EXECUTING_SPAN
    return EXECUTING_START + (min(done, total) * EXECUTING_SPAN) // total


@dataclass
class AgentSet:
    """One instance of every specialist, sharing a backend and a memory store."""
    brand_analyst: BrandAnalystAgent
    creative_director: CreativeDirectorAgent
    compliance_auditor: ComplianceAuditorAgent
    trend_scout: TrendScoutAgent
    context_memory: ContextMemoryAgent
    export_optimizer: ExportOptimizerAgent


def build_agents(
    backend: GenerationBackend,
    memory_store: Optional[ContextMemoryStore] = None,
    pass_threshold: Optional[int] = None,
) -> AgentSet:
    return AgentSet(
        brand_analyst=BrandAnalystAgent(backend),
        creative_director=CreativeDirectorAgent(backend),
        compliance_auditor=ComplianceAuditorAgent(backend, pass_threshold=pass_threshold),
        trend_scout=TrendScoutAgent(backend),
        context_memory=ContextMemoryAgent(memory_store or ContextMemoryStore()),
        export_optimizer=ExportOptimizerAgent(),
    )


def find_graph_errors(tasks: Sequence[Task]) -> List[str]:
    """Static problems that make a task list unrunnable: duplicate ids and self-loops."""
    errors = []
    seen: Set[str] = set()
    for task in tasks:
        if task.id in seen:
            errors.append(f"duplicate task id {task.id}")
        seen.add(task.id)
        if task.id in task.depends_on:
            errors.append(f"task {task.id} ({task.role.value}) depends on itself")
    return errors


def aborts_run(result: TaskResult, state: OrchestrationState) -> bool:
    """
    Whether a failed result stops the run.

    A brand_analyst failure is tolerated while a constitution is already
    available (a saved one, or one from an earlier task), since nothing
    downstream is left without one.
    """
    if result.success or result.role not in CRITICAL_ROLES:
        return False
    if result.role == AgentRole.BRAND_ANALYST and state.has_constitution:
        return False
    return True


class TaskExecutor:
    """Dependency-ordered task runner."""

    def __init__(self, agents: AgentSet, max_concurrency: Optional[int] = None):
        self.agents = agents
        self.max_concurrency = max(1, max_concurrency or settings.EXECUTOR_MAX_CONCURRENCY)

    async def execute(
        self,
        tasks: Sequence[Task],
        state: OrchestrationState,
        on_event: Optional[EventCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> List[TaskResult]:
        """
        Run ``tasks`` respecting ``depends_on``.

        Args:
            tasks: Task list from the planner
            state: Run state; updated with constitution, image and audit results
            on_event: Receives executing/error progress events (sync or async)
            cancel_event: When set, no further task is dispatched

        Returns:
            TaskResults in completion order. Tasks never dispatched have none.
        """
        results: List[TaskResult] = []
        total = len(tasks)
        pending: List[Task] = list(tasks)
        completed_ids: Set[str] = set()
        state.pending_tasks = list(pending)
        state.abort_reason = None

        graph_errors = find_graph_errors(tasks)
        if graph_errors:
            reason = f"Invalid task graph: {'; '.join(graph_errors)}"
            logger.error(reason)
            await self._abort(state, reason, results, total, on_event)
            return results

        lock = asyncio.Lock()

        while pending:
            if self._cancelled(cancel_event):
                await self._abort(state, "Run cancelled", results, total, on_event)
                break

            ready = [t for t in pending if t.depends_on <= completed_ids]
            if not ready:
                blocked = ", ".join(f"{t.role.value}({t.id})" for t in pending)
                reason = f"Task dependency deadlock detected: {len(pending)} task(s) can never run: {blocked}"
                logger.warning(reason)
                await self._abort(state, reason, results, total, on_event)
                break

            if self.max_concurrency > 1 and len(ready) > 1:
                failed = await self._run_concurrently(
                    ready, state, results, pending, completed_ids, total, lock, on_event, cancel_event
                )
            else:
                failed = await self._run_sequentially(
                    ready, state, results, pending, completed_ids, total, on_event, cancel_event
                )

            if failed is not None:
                reason = f"Critical agent {failed.role.value} failed: {failed.error}"
                logger.warning(reason)
                await self._abort(state, reason, results, total, on_event)
                break
            if state.abort_reason:
                break

        state.current_role = None
        self.agents.context_memory.store.set_current_task(state.session_id, None)
        return results

    # ============ BATCHES ============

    async def _run_sequentially(
        self, ready, state, results, pending, completed_ids, total, on_event, cancel_event
    ) -> Optional[TaskResult]:
        """Run a ready batch in list order. Returns the critical failure, if any."""
        for task in ready:
            if self._cancelled(cancel_event):
                await self._abort(state, "Run cancelled", results, total, on_event)
                return None
            await self._emit_start(task, state, len(results), total, on_event)
            result = await self.run_task(task, state)
            await self._record(task, result, state, results, pending, completed_ids, total, on_event)
            if aborts_run(result, state):
                return result
        return None

    async def _run_concurrently(
        self, ready, state, results, pending, completed_ids, total, lock, on_event, cancel_event
    ) -> Optional[TaskResult]:
        """Run a ready batch with bounded concurrency, recording in completion order."""
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def worker(task: Task):
            async with semaphore:
                if self._cancelled(cancel_event):
                    return task, None
                async with lock:
                    await self._emit_start(task, state, len(results), total, on_event)
                return task, await self.run_task(task, state)

        running = [asyncio.ensure_future(worker(task)) for task in ready]
        recorded: Set[str] = set()
        critical: Optional[TaskResult] = None
        try:
            for next_done in asyncio.as_completed(running):
                task, result = await next_done
                if result is None:
                    continue
                async with lock:
                    await self._record(task, result, state, results, pending, completed_ids, total, on_event)
                recorded.add(task.id)
                if aborts_run(result, state):
                    critical = result
                    break

            # Workers that finished alongside the failure already ran; keep their results.
            while critical is not None:
                finished = [
                    future.result() for future in running
                    if future.done() and not future.cancelled()
                ]
                late = [(t, r) for t, r in finished if r is not None and t.id not in recorded]
                if not late:
                    break
                for task, result in late:
                    async with lock:
                        await self._record(task, result, state, results, pending, completed_ids, total, on_event)
                    recorded.add(task.id)
        finally:
            for future in running:
                if not future.done():
                    future.cancel()

        if critical is None and self._cancelled(cancel_event) and pending:
            await self._abort(state, "Run cancelled", results, total, on_event)
        return critical

    # ============ DISPATCH ============

    async def run_task(self, task: Task, state: OrchestrationState) -> TaskResult:
        """Dispatch one task and wrap the outcome. Never raises for agent errors."""
        started = time.monotonic()
        try:
            outcome = await self._dispatch(task, state)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error in {task.role.value} task {task.id}: {e}", exc_info=True)
            outcome = AgentOutcome.fail(f"{task.role.value} failed unexpectedly: {e}")

        duration_ms = int((time.monotonic() - started) * 1000)
        track_task_result(task.role.value, outcome.success)
        return TaskResult(
            task_id=task.id,
            role=task.role,
            success=outcome.success,
            data=outcome.data,
            error=None if outcome.success else outcome.error,
            duration_ms=duration_ms,
        )

    async def _dispatch(self, task: Task, state: OrchestrationState) -> AgentOutcome:
        params = task.params or {}
        state.current_role = task.role

        if task.role == AgentRole.BRAND_ANALYST:
            outcome = await self.agents.brand_analyst.extract_constitution(state.canvas_elements)
            if outcome.success:
                return AgentOutcome.ok({"constitution": outcome.data})
            return outcome

        if task.role == AgentRole.CREATIVE_DIRECTOR:
            if task.action == "refine_prompt":
                return await self.agents.creative_director.refine_prompt(
                    params.get("prompt") or state.current_prompt or "",
                    params.get("feedback") or (state.last_audit.fix_instructions if state.last_audit else ""),
                    state.constitution,
                    params.get("issues"),
                )
            return await self._generate(params, state)

        if task.role == AgentRole.COMPLIANCE_AUDITOR:
            return await self.agents.compliance_auditor.audit_asset(
                state.current_image,
                state.constitution,
                state.current_image_mime_type or "image/png",
            )

        if task.role == AgentRole.TREND_SCOUT:
            return await self.agents.trend_scout.research_trends(
                params.get("query") or state.current_prompt or "",
                params.get("platforms"),
                params.get("niche"),
            )

        if task.role == AgentRole.CONTEXT_MEMORY:
            return self.agents.context_memory.handle(task.action, params, state)

        if task.role == AgentRole.EXPORT_OPTIMIZER:
            return self.agents.export_optimizer.handle(task.action, params)

        return AgentOutcome.fail(f"Unknown agent role: {task.role}")

    async def _generate(self, params, state: OrchestrationState) -> AgentOutcome:
        prompt, aspect_ratio = apply_template(
            params.get("prompt") or state.current_prompt or "",
            params.get("aspect_ratio"),
            params.get("template") or params.get("platform"),
            params.get("asset_type"),
        )
        return await self.agents.creative_director.generate_asset(prompt, state.constitution, aspect_ratio)

    # ============ STATE / EVENTS ============

    def apply_result(self, result: TaskResult, state: OrchestrationState) -> None:
        """Fold a successful result into the run state."""
        if not result.success:
            return
        data = result.data

        if result.role == AgentRole.BRAND_ANALYST and isinstance(data, dict):
            constitution = data.get("constitution")
            if isinstance(constitution, BrandConstitution):
                state.constitution = constitution
        elif result.role == AgentRole.CREATIVE_DIRECTOR and isinstance(data, dict):
            if data.get("image"):
                state.current_image = data["image"]
                state.current_image_mime_type = data.get("mime_type")
            if data.get("prompt"):
                state.current_prompt = data["prompt"]
        elif result.role == AgentRole.COMPLIANCE_AUDITOR and isinstance(data, AuditResult):
            state.last_audit = data

    async def _record(self, task, result, state, results, pending, completed_ids, total, on_event) -> None:
        results.append(result)
        completed_ids.add(task.id)
        pending.remove(task)
        state.completed_results.append(result)
        state.pending_tasks = list(pending)
        self.apply_result(result, state)

        if result.success:
            message = f"{task.role.value} completed {task.action}"
        else:
            message = f"{task.role.value} failed: {result.error}"
        await emit_event(on_event, ProgressEvent(
            phase=ProgressPhase.executing,
            progress=executing_progress(len(results), total),
            message=message,
            current_task=task.to_dict(),
            agent_role=task.role.value,
        ))

    async def _emit_start(self, task, state, done, total, on_event) -> None:
        state.current_role = task.role
        self.agents.context_memory.store.set_current_task(state.session_id, f"{task.role.value}:{task.action}")
        logger.info(f"Delegating to {task.role.value}: {task.action} ({task.id})")
        await emit_event(on_event, ProgressEvent(
            phase=ProgressPhase.executing,
            progress=executing_progress(done, total),
            message=f"Delegating to {task.role.value}: {task.action}",
            current_task=task.to_dict(),
            agent_role=task.role.value,
        ))

    async def _abort(self, state, reason, results, total, on_event) -> None:
        if state.abort_reason:
            return
        state.abort_reason = reason
        await emit_event(on_event, ProgressEvent(
            phase=ProgressPhase.error,
            progress=executing_progress(len(results), total),
            message=reason,
            agent_role=state.current_role.value if state.current_role else None,
        ))

    @staticmethod
    def _cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
        return cancel_event is not None and cancel_event.is_set()


async def emit_event(on_event: Optional[EventCallback], event: ProgressEvent) -> None:
    if on_event is None:
        return
    outcome = on_event(event)
    if inspect.isawaitable(outcome):
        await outcome
