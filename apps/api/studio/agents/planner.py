"""
Planner: turns a free-text request into a task graph.

One backend call asks for a JSON array of tasks whose ``dependsOn`` entries
are indices into that same array. Indices are resolved to generated task ids
after every entry has one. When the call fails, returns unparsable JSON or
yields no usable tasks, a deterministic keyword plan is used instead.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..llm_backend import BackendError, CompletionOptions, GenerationBackend, LatencyClass, TextPart
from .parsing import parse_json_response
from .types import AgentRole, OrchestrationState, Priority, Task, new_task_id

logger = logging.getLogger(__name__)

GENERATION_KEYWORDS = ("thumbnail", "image", "create", "generate", "make")
TREND_KEYWORDS = ("trend", "popular", "current")

DEFAULT_ACTIONS = {
    AgentRole.BRAND_ANALYST: "extract_constitution",
    AgentRole.CREATIVE_DIRECTOR: "generate_asset",
    AgentRole.COMPLIANCE_AUDITOR: "audit_asset",
    AgentRole.TREND_SCOUT: "research_trends",
    AgentRole.CONTEXT_MEMORY: "get_context",
    AgentRole.EXPORT_OPTIMIZER: "get_template",
}

ORCHESTRATOR_SYSTEM_PROMPT = """You are the orchestrator of a brand design studio.
You never do the work yourself: you delegate to specialist agents.

Agents and their actions:
- brand_analyst: extract_constitution (reads the moodboard, produces the Brand Constitution)
- creative_director: generate_asset (params: prompt, aspect_ratio?, platform?), refine_prompt
- compliance_auditor: audit_asset (scores the latest generated image)
- trend_scout: research_trends (params: query, platforms?)
- context_memory: record_turn, get_context, update_constitution, log_asset, record_correction
- export_optimizer: get_template (params: template or platform, asset_type?), batch_export (params: templates)

Rules:
- A Brand Constitution must exist before generating; analyse the canvas first when it is missing.
- Always audit a generated asset.
- Keep plans short: only the tasks the request needs."""

PLAN_PROMPT = """<user_request>
{message}
</user_request>

<current_state>
- Has Brand Constitution: {has_constitution}
- Has Canvas Elements: {has_canvas}
- Current Image: {has_image}
</current_state>

<task>
Decompose this request into agent tasks. Return a JSON array of tasks.
Each task should have: role, action, params, priority, dependsOn (optional array of task indices).

Example format:
[
  {{ "role": "brand_analyst", "action": "extract_constitution", "params": {{}}, "priority": "high" }},
  {{ "role": "creative_director", "action": "generate_asset", "params": {{ "prompt": "..." }}, "priority": "normal", "dependsOn": [0] }}
]
</task>"""


@dataclass
class Plan:
    """Planner output: the tasks plus where they came from."""
    tasks: List[Task] = field(default_factory=list)
    source: str = "backend"  # backend | fallback
    thinking: Optional[str] = None


def _contains_any(message: str, keywords) -> bool:
    return any(keyword in message for keyword in keywords)


def fallback_plan(message: str, has_constitution: bool, has_canvas_elements: bool) -> List[Task]:
    """
    Deterministic keyword plan.

    The role sequence depends only on ``(message, has_constitution,
    has_canvas_elements)``. May be empty when nothing matches, which callers
    treat as "nothing to do".
    """
    tasks: List[Task] = []
    lowered = (message or "").lower()

    if not has_constitution and has_canvas_elements:
        tasks.append(Task(
            id=new_task_id(),
            role=AgentRole.BRAND_ANALYST,
            action="extract_constitution",
            priority=Priority.HIGH,
        ))

    if _contains_any(lowered, GENERATION_KEYWORDS):
        generation = Task(
            id=new_task_id(),
            role=AgentRole.CREATIVE_DIRECTOR,
            action="generate_asset",
            params={"prompt": message},
            priority=Priority.NORMAL,
            depends_on=frozenset({tasks[0].id}) if tasks else frozenset(),
        )
        tasks.append(generation)
        # Always audit after generation
        tasks.append(Task(
            id=new_task_id(),
            role=AgentRole.COMPLIANCE_AUDITOR,
            action="audit_asset",
            priority=Priority.HIGH,
            depends_on=frozenset({generation.id}),
        ))

    if _contains_any(lowered, TREND_KEYWORDS):
        tasks.append(Task(
            id=new_task_id(),
            role=AgentRole.TREND_SCOUT,
            action="research_trends",
            params={"query": message},
            priority=Priority.LOW,
        ))

    return tasks


def _dependency_indices(raw: Any) -> List[int]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raw = [raw]
    indices = []
    for value in raw:
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            indices.append(value)
        elif isinstance(value, str) and value.strip().isdigit():
            indices.append(int(value.strip()))
        else:
            logger.warning(f"Ignoring non-numeric task dependency {value!r}")
    return indices


def resolve_plan(entries: List[Any]) -> List[Task]:
    """
    Convert the backend's task array into Tasks with real ids.

    Every entry gets an id first (by position), then ``dependsOn`` indices are
    replaced by the ids of the entries they point at. Entries with an unknown
    role are skipped and dependencies on skipped or out-of-range positions are
    dropped. A self-reference is kept so the executor reports it.
    """
    ids = [new_task_id() for _ in entries]
    valid: Dict[int, AgentRole] = {}

    for index, entry in enumerate(entries):
        if not isinstance(entry, dict):
            logger.warning(f"Skipping planned task #{index}: not an object")
            continue
        try:
            valid[index] = AgentRole(str(entry.get("role", "")).strip().lower())
        except ValueError:
            logger.warning(f"Skipping planned task #{index}: unknown role {entry.get('role')!r}")

    tasks = []
    for index, role in valid.items():
        entry = entries[index]
        depends_on = set()
        for dep in _dependency_indices(entry.get("dependsOn", entry.get("depends_on"))):
            if dep in valid:
                depends_on.add(ids[dep])
            else:
                logger.warning(f"Planned task #{index} depends on missing task #{dep}, dropping edge")

        params = entry.get("params")
        try:
            priority = Priority(str(entry.get("priority", "normal")).lower())
        except ValueError:
            priority = Priority.NORMAL

        tasks.append(Task(
            id=ids[index],
            role=role,
            action=str(entry.get("action") or DEFAULT_ACTIONS[role]),
            params=dict(params) if isinstance(params, dict) else {},
            priority=priority,
            depends_on=frozenset(depends_on),
        ))
    return tasks


class Planner:
    """Plans a run with the backend, falling back to keyword rules."""

    def __init__(self, backend: GenerationBackend):
        self.backend = backend

    async def plan(self, user_message: str, state: OrchestrationState) -> Plan:
        prompt = PLAN_PROMPT.format(
            message=user_message,
            has_constitution="Yes" if state.has_constitution else "No",
            has_canvas=f"Yes ({len(state.canvas_elements)} elements)" if state.has_canvas_elements else "No",
            has_image="Generated" if state.has_current_image else "None",
        )

        try:
            completion = await self.backend.complete(
                [TextPart(prompt)],
                CompletionOptions(
                    latency=LatencyClass.ANALYSIS,
                    json_output=True,
                    temperature=1.0,
                    system_instruction=ORCHESTRATOR_SYSTEM_PROMPT,
                ),
            )
        except BackendError as e:
            logger.warning(f"Planning call failed ({e.kind}), using keyword plan: {e}")
            return self._fallback(user_message, state)
        except Exception as e:
            logger.error(f"Unexpected error while planning: {e}", exc_info=True)
            return self._fallback(user_message, state)

        entries = parse_json_response(completion.text, expect=list)
        if entries is None:
            logger.warning("Planning call returned unparsable JSON, using keyword plan")
            return self._fallback(user_message, state)

        tasks = resolve_plan(entries)
        if not tasks:
            logger.warning("Planning call produced no usable tasks, using keyword plan")
            return self._fallback(user_message, state)

        logger.info(f"Planned {len(tasks)} agent tasks: {[t.role.value for t in tasks]}")
        return Plan(tasks=tasks, source="backend", thinking=completion.thoughts)

    def _fallback(self, user_message: str, state: OrchestrationState) -> Plan:
        tasks = fallback_plan(user_message, state.has_constitution, state.has_canvas_elements)
        logger.info(f"Keyword plan: {[t.role.value for t in tasks]}")
        return Plan(tasks=tasks, source="fallback")


async def plan_tasks(user_message: str, state: OrchestrationState, backend: GenerationBackend) -> List[Task]:
    """Plan a run and return just the task list."""
    plan = await Planner(backend).plan(user_message, state)
    return plan.tasks
