"""
Tests for task planning: backend plans, dependency resolution and the keyword
fallback.
"""

import pytest

from studio.agents.planner import Planner, fallback_plan, plan_tasks, resolve_plan
from studio.agents.types import AgentRole, Priority, new_orchestration_state
from studio.llm_backend import BackendTimeoutError

from fakes import image_element, plan_json, sample_constitution


def roles(tasks):
    return [t.role for t in tasks]


class TestFallbackPlan:
    """Deterministic keyword planning."""

    def test_generation_request_on_fresh_canvas(self):
        """Test analysis, generation and audit are chained in order."""
        tasks = fallback_plan("Create a YouTube thumbnail", has_constitution=False, has_canvas_elements=True)

        assert roles(tasks) == [
            AgentRole.BRAND_ANALYST,
            AgentRole.CREATIVE_DIRECTOR,
            AgentRole.COMPLIANCE_AUDITOR,
        ]
        analyst, director, auditor = tasks
        assert director.depends_on == frozenset({analyst.id})
        assert auditor.depends_on == frozenset({director.id})
        assert director.params == {"prompt": "Create a YouTube thumbnail"}
        assert analyst.priority == Priority.HIGH

    def test_existing_constitution_skips_analysis(self):
        """Test no analysis task is planned when a constitution exists."""
        tasks = fallback_plan("Generate a banner", has_constitution=True, has_canvas_elements=True)

        assert roles(tasks) == [AgentRole.CREATIVE_DIRECTOR, AgentRole.COMPLIANCE_AUDITOR]
        assert tasks[0].depends_on == frozenset()

    def test_trend_request(self):
        """Test trend keywords add an independent research task."""
        tasks = fallback_plan("What is popular right now?", has_constitution=True, has_canvas_elements=False)

        assert roles(tasks) == [AgentRole.TREND_SCOUT]
        assert tasks[0].params == {"query": "What is popular right now?"}
        assert tasks[0].priority == Priority.LOW

    def test_no_keywords_is_empty(self):
        """Test an unmatched request yields no tasks."""
        assert fallback_plan("hello there", has_constitution=True, has_canvas_elements=False) == []

    def test_role_sequence_is_deterministic(self):
        """Test the same inputs always produce the same roles."""
        first = fallback_plan("make a trendy image", False, True)
        second = fallback_plan("make a trendy image", False, True)

        assert roles(first) == roles(second)
        assert {t.id for t in first}.isdisjoint({t.id for t in second})


class TestResolvePlan:
    """Index dependencies become task ids."""

    def test_indices_are_resolved(self):
        """Test dependsOn indices map onto the generated ids."""
        tasks = resolve_plan([
            {"role": "brand_analyst", "action": "extract_constitution", "priority": "high"},
            {"role": "creative_director", "params": {"prompt": "cat"}, "dependsOn": [0]},
            {"role": "compliance_auditor", "dependsOn": ["1"]},
        ])

        assert len({t.id for t in tasks}) == 3
        assert tasks[1].depends_on == frozenset({tasks[0].id})
        assert tasks[2].depends_on == frozenset({tasks[1].id})
        assert tasks[1].action == "generate_asset"
        assert tasks[2].action == "audit_asset"

    def test_forward_references_resolve(self):
        """Test a dependency on a later entry still resolves."""
        tasks = resolve_plan([
            {"role": "compliance_auditor", "dependsOn": [1]},
            {"role": "creative_director"},
        ])

        assert tasks[0].depends_on == frozenset({tasks[1].id})

    def test_invalid_entries_and_edges_are_dropped(self):
        """Test unknown roles are skipped and edges to them or out of range are dropped."""
        tasks = resolve_plan([
            {"role": "janitor"},
            "not an object",
            {"role": "trend_scout", "dependsOn": [0, 1, 7, "x"]},
        ])

        assert roles(tasks) == [AgentRole.TREND_SCOUT]
        assert tasks[0].depends_on == frozenset()

    def test_self_reference_is_kept(self):
        """Test a task depending on itself is passed through for the executor to reject."""
        tasks = resolve_plan([{"role": "trend_scout", "dependsOn": [0]}])

        assert tasks[0].depends_on == frozenset({tasks[0].id})

    def test_bad_priority_and_params(self):
        """Test odd priority and params values fall back to defaults."""
        tasks = resolve_plan([{"role": "Trend_Scout", "priority": "urgent", "params": "query"}])

        assert tasks[0].priority == Priority.NORMAL
        assert tasks[0].params == {}


class TestPlanner:
    """Backend planning with fallback."""

    @pytest.mark.asyncio
    async def test_backend_plan(self, backend):
        """Test a valid backend plan is used as-is."""
        backend.script("plan", plan_json(
            {"role": "trend_scout", "action": "research_trends", "params": {"query": "cats"}},
        ))
        state = new_orchestration_state()

        plan = await Planner(backend).plan("What are cats doing?", state)

        assert plan.source == "backend"
        assert roles(plan.tasks) == [AgentRole.TREND_SCOUT]

    @pytest.mark.asyncio
    async def test_plan_prompt_describes_state(self, backend):
        """Test the planning prompt reports canvas and constitution state."""
        state = new_orchestration_state(canvas_elements=[image_element()], constitution=sample_constitution())

        await Planner(backend).plan("anything", state)

        _, parts, _ = backend.calls[0]
        assert "Has Brand Constitution: Yes" in parts[0].text
        assert "Has Canvas Elements: Yes (1 elements)" in parts[0].text

    @pytest.mark.asyncio
    async def test_backend_failure_uses_fallback(self, backend):
        """Test a failing planning call falls back to keyword rules."""
        backend.script("plan", BackendTimeoutError("deadline"))
        state = new_orchestration_state(canvas_elements=[image_element()])

        plan = await Planner(backend).plan("Create a thumbnail", state)

        assert plan.source == "fallback"
        assert roles(plan.tasks) == [
            AgentRole.BRAND_ANALYST,
            AgentRole.CREATIVE_DIRECTOR,
            AgentRole.COMPLIANCE_AUDITOR,
        ]

    @pytest.mark.asyncio
    async def test_unparsable_plan_uses_fallback(self, backend):
        """Test prose instead of JSON falls back to keyword rules."""
        backend.script("plan", "First I would analyse the brand...")
        state = new_orchestration_state(constitution=sample_constitution())

        plan = await Planner(backend).plan("generate an image", state)

        assert plan.source == "fallback"
        assert roles(plan.tasks) == [AgentRole.CREATIVE_DIRECTOR, AgentRole.COMPLIANCE_AUDITOR]

    @pytest.mark.asyncio
    async def test_empty_plan_uses_fallback(self, backend):
        """Test an empty array falls back, which may itself be empty."""
        tasks = await plan_tasks("hello", new_orchestration_state(), backend)

        assert tasks == []
        assert backend.count("plan") == 1
