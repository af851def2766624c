"""
Task vocabulary for the multi-agent orchestration core.

Pure data contracts: the planner creates Tasks, the executor wraps every agent
invocation in exactly one TaskResult, and OrchestrationState is the per-run
scratchpad the executor owns until the run ends.
"""

import random
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from ..schemas import AuditResult, BrandConstitution, CanvasElement


class AgentRole(str, Enum):
    """The six specialist roles a task can be assigned to."""
    BRAND_ANALYST = "brand_analyst"
    CREATIVE_DIRECTOR = "creative_director"
    COMPLIANCE_AUDITOR = "compliance_auditor"
    TREND_SCOUT = "trend_scout"
    CONTEXT_MEMORY = "context_memory"
    EXPORT_OPTIMIZER = "export_optimizer"


# A failure in one of these roles aborts the whole run (see executor.aborts_run)
CRITICAL_ROLES = frozenset({AgentRole.BRAND_ANALYST, AgentRole.CREATIVE_DIRECTOR})


class Priority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


@dataclass(frozen=True)
class Task:
    """A unit of work delegated to one agent. Immutable once queued."""
    id: str
    role: AgentRole
    action: str
    params: Dict[str, Any] = field(default_factory=dict)
    priority: Priority = Priority.NORMAL
    depends_on: FrozenSet[str] = frozenset()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "action": self.action,
            "params": self.params,
            "priority": self.priority.value,
            "depends_on": sorted(self.depends_on),
        }


@dataclass(frozen=True)
class TaskResult:
    """Outcome of one executed task. Created once by the executor, never mutated."""
    task_id: str
    role: AgentRole
    success: bool
    data: Any = None
    error: Optional[str] = None
    duration_ms: int = 0

    def __post_init__(self):
        if self.success and self.error is not None:
            raise ValueError("A successful TaskResult cannot carry an error")
        if not self.success and not self.error:
            raise ValueError("A failed TaskResult must carry an error message")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "role": self.role.value,
            "success": self.success,
            "data": _jsonable(self.data),
            "error": self.error,
            "duration_ms": self.duration_ms,
        }


@dataclass
class AgentOutcome:
    """What an agent hands back: the TaskResult envelope minus id and timing."""
    success: bool
    data: Any = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: Any) -> "AgentOutcome":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, data: Any = None) -> "AgentOutcome":
        return cls(success=False, data=data, error=error or "Unknown error")


@dataclass
class RunOutcome:
    """What an orchestration strategy reports once it stops."""
    success: bool
    message: str
    task_results: List[TaskResult] = field(default_factory=list)


@dataclass
class OrchestrationState:
    """Mutable per-run record. Owned by one executor and discarded at run end."""
    session_id: str
    start_time: float
    current_role: Optional[AgentRole] = None
    pending_tasks: List[Task] = field(default_factory=list)
    completed_results: List[TaskResult] = field(default_factory=list)
    constitution: Optional[BrandConstitution] = None
    current_image: Optional[bytes] = None
    current_image_mime_type: Optional[str] = None
    current_prompt: Optional[str] = None
    last_audit: Optional[AuditResult] = None
    canvas_elements: List[CanvasElement] = field(default_factory=list)
    user_id: Optional[str] = None
    brand_id: Optional[str] = None
    # Set by the executor when it stops early (deadlock, critical failure, cancellation)
    abort_reason: Optional[str] = None

    @property
    def has_constitution(self) -> bool:
        return self.constitution is not None

    @property
    def has_canvas_elements(self) -> bool:
        return bool(self.canvas_elements)

    @property
    def has_current_image(self) -> bool:
        return bool(self.current_image)


def _random_suffix(length: int) -> str:
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=length))


def new_task_id() -> str:
    """Return a process-unique task id: millisecond timestamp plus random suffix."""
    return f"task_{int(time.time() * 1000)}_{_random_suffix(7)}"


def new_orchestration_state(
    canvas_elements: Optional[List[CanvasElement]] = None,
    constitution: Optional[BrandConstitution] = None,
    session_id: Optional[str] = None,
    user_id: Optional[str] = None,
    brand_id: Optional[str] = None,
) -> OrchestrationState:
    """Create zeroed state for a new run, with a fresh session id unless one is given."""
    return OrchestrationState(
        session_id=session_id or f"session_{int(time.time() * 1000)}_{_random_suffix(6)}",
        start_time=time.monotonic(),
        canvas_elements=list(canvas_elements or []),
        constitution=constitution,
        user_id=user_id,
        brand_id=brand_id,
    )


def _jsonable(value: Any) -> Any:
    """Strip raw bytes and pydantic models down to JSON-safe values."""
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes>"
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value
