"""
Multi-agent system for brand-consistent asset creation.

Specialist agents, each wrapping one kind of backend call:

ANALYSIS:
- Brand Analyst: moodboard -> Brand Constitution
- Trend Scout: search-grounded trend research (advisory, never fails)

CREATION:
- Creative Director: on-brand image generation and prompt refinement
- Compliance Auditor: scores an image against the constitution

SUPPORT (no backend call):
- Context Memory: session history, undo, learned brand preferences
- Export Optimizer: platform templates and batch export metadata

COORDINATION:
- Planner: request -> dependency-ordered task list (keyword fallback)
- TaskExecutor: runs the task graph
- AgentLoop: backend-driven tool loop, the alternative to planner + executor
"""

from .agent_loop import AgentLoop
from .brand_analyst import BrandAnalystAgent
from .compliance_auditor import ComplianceAuditorAgent
from .context_memory import ContextMemoryAgent
from .creative_director import CreativeDirectorAgent
from .executor import AgentSet, TaskExecutor, build_agents
from .export_optimizer import ExportOptimizerAgent
from .planner import Planner, fallback_plan, plan_tasks
from .trend_scout import TrendScoutAgent
from .types import AgentRole, Task, TaskResult


__all__ = [
    # Specialists
    "BrandAnalystAgent",
    "TrendScoutAgent",
    "CreativeDirectorAgent",
    "ComplianceAuditorAgent",
    "ContextMemoryAgent",
    "ExportOptimizerAgent",
    # Coordination
    "Planner",
    "fallback_plan",
    "plan_tasks",
    "AgentSet",
    "build_agents",
    "TaskExecutor",
    "AgentLoop",
    # Vocabulary
    "AgentRole",
    "Task",
    "TaskResult",
]
