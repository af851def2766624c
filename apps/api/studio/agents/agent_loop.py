"""
Backend-driven agent loop.

Instead of a static plan, the backend picks the next tool on every step:

    analyze_canvas -> search_trends? -> generate_image -> audit_compliance
        -> (refine_prompt -> generate_image -> audit_compliance)* -> complete_task

Phases move planning -> analyzing -> generating -> auditing -> refining ->
complete as tools run. The loop ends when the backend calls complete_task,
stops choosing tools or the step cap is hit; in every case whatever image
was produced is kept.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.config import settings
from ..llm_backend import BackendError, CompletionOptions, GenerationBackend, LatencyClass, TextPart
from ..llm_retry import OrchestrationError
from ..memory.context_memory import ContextMemoryStore
from ..middleware.metrics import track_task_result
from ..models import ProgressEvent, ProgressPhase
from ..schemas import AuditResult, BrandConstitution, TrendResearch
from .executor import AgentSet, EventCallback, emit_event, executing_progress
from .parsing import parse_json_response
from .types import AgentOutcome, AgentRole, OrchestrationState, RunOutcome, TaskResult, new_task_id

logger = logging.getLogger(__name__)

MAX_GENERATION_ATTEMPTS = 3


class AgentPhase(str, Enum):
    planning = "planning"
    analyzing = "analyzing"
    generating = "generating"
    auditing = "auditing"
    refining = "refining"
    complete = "complete"


TOOL_ROLES = {
    "analyze_canvas": AgentRole.BRAND_ANALYST,
    "generate_image": AgentRole.CREATIVE_DIRECTOR,
    "audit_compliance": AgentRole.COMPLIANCE_AUDITOR,
    "refine_prompt": AgentRole.CREATIVE_DIRECTOR,
    "search_trends": AgentRole.TREND_SCOUT,
}

TOOL_MESSAGES = {
    "analyze_canvas": "Analyzing your moodboard to understand the brand DNA...",
    "generate_image": "Generating image...",
    "audit_compliance": "Auditing image against brand guidelines...",
    "refine_prompt": "Refining the prompt based on audit feedback...",
    "search_trends": "Searching for current design trends...",
    "complete_task": "Task complete!",
}

AGENT_TOOLS = """Available tools (call exactly one per reply):
- analyze_canvas {}: extract the Brand Constitution from the moodboard. Call first unless one is saved.
- generate_image {"prompt": str, "aspect_ratio"?: "1:1"|"16:9"|"9:16"|"4:3"|"3:4"}: render a marketing image.
- audit_compliance {}: score the latest image against the Brand Constitution.
- refine_prompt {"original_prompt": str, "audit_feedback": str, "issues"?: [str]}: improve a prompt after a failed audit.
- search_trends {"query": str}: research current design trends.
- complete_task {"success": bool, "message": str}: finish. Call when an image passes audit or after the last attempt.

Reply with JSON only:
{"thinking": "<your reasoning>", "tool": "<tool name>", "args": {...}}"""

SYSTEM_PROMPT = """You are an autonomous marketing asset generator agent.

USER REQUEST: "{prompt}"

CANVAS ELEMENTS AVAILABLE ({element_count} items):
{elements}
{memory}
YOUR GOAL:
{first_step}
2. Optionally call search_trends for current design trends.
3. Call generate_image with a detailed prompt based on the brand constitution.
4. Call audit_compliance to check the generated image against brand guidelines.
5. If audit fails (score < {threshold}), call refine_prompt and generate_image again.
6. Maximum {max_attempts} generation attempts. After that, complete with the best result.
7. When done, call complete_task.

{tools}"""


@dataclass
class AgentAction:
    tool: str
    input: Dict[str, Any]
    output: Dict[str, Any]
    thinking: Optional[str] = None
    timestamp: int = field(default_factory=lambda: int(time.time() * 1000))


@dataclass
class AgentState:
    """Loop bookkeeping layered over the shared run state."""
    run: OrchestrationState
    step: int = 0
    phase: AgentPhase = AgentPhase.planning
    audit_score: Optional[int] = None
    attempts: int = 0
    max_attempts: int = MAX_GENERATION_ATTEMPTS
    history: List[AgentAction] = field(default_factory=list)


@dataclass
class ToolCall:
    name: str
    args: Dict[str, Any]
    thinking: Optional[str] = None


def parse_tool_call(text: Optional[str]) -> Optional[ToolCall]:
    """Read ``{"tool", "args", "thinking"}`` from a decision reply. None means no tool was chosen."""
    data = parse_json_response(text)
    if data is None:
        return None
    name = data.get("tool") or data.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    args = data.get("args", data.get("arguments"))
    thinking = data.get("thinking")
    return ToolCall(
        name=name.strip(),
        args=args if isinstance(args, dict) else {},
        thinking=thinking if isinstance(thinking, str) else None,
    )


def summarize_elements(state: OrchestrationState) -> str:
    """Canvas summary for the decision prompt. Image payloads stay out of it."""
    summary = [
        {
            "id": el.id,
            "type": el.type.value,
            "name": el.name or f"{el.type.value} element",
            "has_image": el.type.value == "image" and bool(el.url),
            "text": el.text if el.type.value in ("note", "text") else None,
            "color": el.color if el.type.value == "color" else None,
        }
        for el in state.canvas_elements
    ]
    return json.dumps(summary, indent=2)


class AgentLoop:
    """Runs one request with the backend choosing each tool."""

    def __init__(
        self,
        backend: GenerationBackend,
        agents: AgentSet,
        memory_store: Optional[ContextMemoryStore] = None,
        max_iterations: Optional[int] = None,
        pass_threshold: Optional[int] = None,
    ):
        self.backend = backend
        self.agents = agents
        self.memory_store = memory_store
        self.max_iterations = max_iterations or settings.AGENT_LOOP_MAX_ITERATIONS
        self.pass_threshold = pass_threshold if pass_threshold is not None else settings.AGENT_LOOP_PASS_THRESHOLD

    def _system_prompt(self, prompt: str, run: OrchestrationState) -> str:
        if run.constitution is not None:
            memory = (
                "\nMEMORY: You have a saved Brand Constitution from a previous session:\n"
                f"{json.dumps(run.constitution.model_dump(mode='json'), indent=2)}\n"
            )
            first_step = "1. You already have a saved Brand Constitution. Skip analyze_canvas."
        else:
            memory = ""
            first_step = "1. First, call analyze_canvas to understand the brand from the moodboard images."
        return SYSTEM_PROMPT.format(
            prompt=prompt,
            element_count=len(run.canvas_elements),
            elements=summarize_elements(run),
            memory=memory,
            first_step=first_step,
            threshold=self.pass_threshold,
            max_attempts=MAX_GENERATION_ATTEMPTS,
            tools=AGENT_TOOLS,
        )

    async def _decide(self, system_prompt: str, agent_state: AgentState) -> Optional[ToolCall]:
        transcript = [
            f"STEP {i + 1}: {action.tool}({json.dumps(action.input)}) -> {json.dumps(action.output)}"
            for i, action in enumerate(agent_state.history)
        ]
        message = "\n".join(transcript) if transcript else "Begin. Choose the first tool."
        completion = await self.backend.complete(
            [TextPart(message)],
            CompletionOptions(
                latency=LatencyClass.ANALYSIS,
                json_output=True,
                temperature=1.0,
                system_instruction=system_prompt,
            ),
        )
        if completion.thought_signature and self.memory_store is not None:
            self.memory_store.store_thought_signature(
                agent_state.run.session_id, f"step_{agent_state.step}", completion.thought_signature
            )
        call = parse_tool_call(completion.text)
        if call is not None and not call.thinking:
            call.thinking = completion.thoughts
        return call

    async def run(
        self,
        prompt: str,
        run: OrchestrationState,
        on_event: Optional[EventCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> RunOutcome:
        """
        Drive the loop to completion.

        Raises:
            OrchestrationError: when the very first decision call fails, or a
                later one fails before any image exists
        """
        agent_state = AgentState(run=run)
        results: List[TaskResult] = []
        system_prompt = self._system_prompt(prompt, run)

        await emit_event(on_event, ProgressEvent(
            phase=ProgressPhase.planning,
            progress=executing_progress(0, self.max_iterations),
            message="Agent is planning its first step...",
        ))

        for iteration in range(self.max_iterations):
            if cancel_event is not None and cancel_event.is_set():
                run.abort_reason = "Run cancelled"
                return RunOutcome(success=False, message="Run cancelled", task_results=results)

            try:
                call = await self._decide(system_prompt, agent_state)
            except BackendError as e:
                if iteration == 0:
                    logger.error(f"Agent loop could not start: {e}", exc_info=True)
                    raise OrchestrationError.from_backend_error(e, "Agent initialization") from e
                if run.has_current_image:
                    logger.warning(f"Agent decision failed after an image was produced, returning it: {e}")
                    return RunOutcome(
                        success=True,
                        message="Generated image successfully! (Agent flow interrupted but image was created)",
                        task_results=results,
                    )
                logger.error(f"Agent loop decision failed: {e}", exc_info=True)
                raise OrchestrationError.from_backend_error(e, "Agent step") from e

            if call is None:
                logger.info(f"Agent chose no tool at step {agent_state.step}, stopping")
                break

            agent_state.step += 1
            role = TOOL_ROLES.get(call.name)
            await emit_event(on_event, ProgressEvent(
                phase=ProgressPhase.executing,
                progress=executing_progress(iteration, self.max_iterations),
                message=TOOL_MESSAGES.get(call.name, f"Executing {call.name}..."),
                thinking=call.thinking,
                agent_role=role.value if role else None,
                current_task={"tool": call.name, "step": agent_state.step},
            ))

            if call.name == "complete_task":
                success = call.args.get("success")
                if not isinstance(success, bool):
                    success = run.has_current_image
                agent_state.phase = AgentPhase.complete
                message = str(call.args.get("message") or ("Task complete" if success else "Task not completed"))
                return RunOutcome(success=success, message=message, task_results=results)

            started = time.monotonic()
            outcome, output = await self.execute_tool(call, agent_state, prompt)
            agent_state.history.append(AgentAction(call.name, call.args, output, call.thinking))

            if role is not None:
                track_task_result(role.value, outcome.success)
                result = TaskResult(
                    task_id=new_task_id(),
                    role=role,
                    success=outcome.success,
                    data=outcome.data,
                    error=None if outcome.success else outcome.error,
                    duration_ms=int((time.monotonic() - started) * 1000),
                )
                results.append(result)
                run.completed_results.append(result)

            await emit_event(on_event, ProgressEvent(
                phase=ProgressPhase.executing,
                progress=executing_progress(iteration + 1, self.max_iterations),
                message=f"{call.name} {'completed' if outcome.success else 'failed: ' + str(outcome.error)}",
                agent_role=role.value if role else None,
                current_task={"tool": call.name, "step": agent_state.step, "phase": agent_state.phase.value},
            ))

        score = agent_state.audit_score if agent_state.audit_score is not None else "N/A"
        return RunOutcome(
            success=run.has_current_image,
            message=f"Agent completed after {agent_state.attempts} attempts. Best score: {score}",
            task_results=results,
        )

    async def execute_tool(self, call: ToolCall, agent_state: AgentState, prompt: str):
        """Run one tool. Returns the agent outcome and a compact summary for the backend."""
        run = agent_state.run
        args = call.args

        if call.name == "analyze_canvas":
            if not run.canvas_elements:
                outcome = AgentOutcome.fail("No canvas elements provided")
                return outcome, {"success": False, "error": outcome.error}
            outcome = await self.agents.brand_analyst.extract_constitution(run.canvas_elements)
            if not outcome.success:
                return outcome, {"success": False, "error": outcome.error}
            constitution: BrandConstitution = outcome.data
            run.constitution = constitution
            agent_state.phase = AgentPhase.analyzing
            return (
                AgentOutcome.ok({"constitution": constitution}),
                {"success": True, "constitution": constitution.model_dump(mode="json")},
            )

        if call.name == "generate_image":
            if agent_state.attempts >= agent_state.max_attempts:
                outcome = AgentOutcome.fail(
                    f"Maximum generation attempts ({agent_state.max_attempts}) reached; call complete_task"
                )
                return outcome, {"success": False, "error": outcome.error}
            agent_state.attempts += 1
            agent_state.phase = AgentPhase.generating
            outcome = await self.agents.creative_director.generate_asset(
                str(args.get("prompt") or run.current_prompt or prompt),
                run.constitution,
                args.get("aspect_ratio"),
            )
            if outcome.success:
                run.current_image = outcome.data["image"]
                run.current_image_mime_type = outcome.data.get("mime_type")
                run.current_prompt = outcome.data.get("prompt")
            return outcome, {
                "success": outcome.success,
                "image_generated": outcome.success,
                "error": outcome.error,
                "retry_suggested": not outcome.success,
            }

        if call.name == "audit_compliance":
            if not run.current_image or run.constitution is None:
                outcome = AgentOutcome.fail("Missing image or constitution")
                return outcome, {"success": False, "error": outcome.error}
            outcome = await self.agents.compliance_auditor.audit_asset(
                run.current_image, run.constitution, run.current_image_mime_type or "image/png"
            )
            if not outcome.success:
                return outcome, {"success": False, "error": outcome.error}
            audit: AuditResult = outcome.data
            passes = audit.compliance_score >= self.pass_threshold
            if audit.passed != passes:
                audit = audit.model_copy(update={"passed": passes})
                outcome = AgentOutcome.ok(audit)
            run.last_audit = audit
            if agent_state.audit_score is None or audit.compliance_score > agent_state.audit_score:
                agent_state.audit_score = audit.compliance_score
            agent_state.phase = AgentPhase.complete if passes else AgentPhase.auditing
            return outcome, {
                "success": True,
                "compliance_score": audit.compliance_score,
                "pass": passes,
                "issues": [point.issue for point in audit.heatmap_coordinates],
                "fix_instructions": audit.fix_instructions,
                "next_action": "CALL complete_task NOW - image passed audit!" if passes else "refine and retry",
            }

        if call.name == "refine_prompt":
            feedback = str(args.get("audit_feedback") or (run.last_audit.fix_instructions if run.last_audit else ""))
            issues = args.get("issues") if isinstance(args.get("issues"), list) else None
            outcome = await self.agents.creative_director.refine_prompt(
                str(args.get("original_prompt") or run.current_prompt or prompt),
                feedback,
                run.constitution,
                issues,
            )
            agent_state.phase = AgentPhase.refining
            if not outcome.success:
                return outcome, {"success": False, "error": outcome.error}
            run.current_prompt = outcome.data["prompt"]
            return outcome, {"success": True, "refined_prompt": outcome.data["prompt"]}

        if call.name == "search_trends":
            outcome = await self.agents.trend_scout.research_trends(str(args.get("query") or prompt))
            research: TrendResearch = outcome.data
            return outcome, {"success": True, "search_results": research.model_dump(mode="json")}

        outcome = AgentOutcome.fail(f"Unknown tool: {call.name}")
        return outcome, {"error": outcome.error}
