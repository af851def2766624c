"""
Context Memory agent.

Task-facing wrapper over ContextMemoryStore. Pure in-process state, no backend
call. No deduplication: calling an action twice logs it twice.
"""

import logging
from typing import Any, Dict, Optional

from ..memory.context_memory import ContextMemoryStore, SnapshotTrigger
from .types import AgentOutcome, OrchestrationState

logger = logging.getLogger(__name__)


class ContextMemoryAgent:
    """Records and recalls session and brand context for a run."""

    ACTIONS = ("record_turn", "get_context", "update_constitution", "log_asset", "record_correction")

    def __init__(self, store: ContextMemoryStore):
        self.store = store

    def handle(self, action: str, params: Dict[str, Any], state: OrchestrationState) -> AgentOutcome:
        """
        Run one memory action against the store.

        Args:
            action: One of ACTIONS
            params: Action parameters
            state: Current run state (session id, brand ids, constitution)

        Returns:
            AgentOutcome describing what was stored or recalled
        """
        session_id = params.get("session_id") or state.session_id
        user_id: Optional[str] = params.get("user_id") or state.user_id
        brand_id: Optional[str] = params.get("brand_id") or state.brand_id

        if action == "record_turn":
            content = params.get("content") or params.get("message") or ""
            if not content:
                return AgentOutcome.fail("Nothing to record: 'content' is empty")
            turn = self.store.add_conversation_turn(
                session_id,
                role=params.get("role", "user"),
                content=content,
                agent_role=params.get("agent_role"),
            )
            history = self.store.get_session(session_id).conversation_history
            return AgentOutcome.ok({"session_id": session_id, "turns": len(history), "timestamp": turn.timestamp})

        if action == "get_context":
            session = self.store.get_session(session_id)
            data = {
                "session_id": session_id,
                "recent_turns": [
                    {"role": t.role, "content": t.content} for t in list(session.conversation_history)[-10:]
                ],
            }
            if user_id and brand_id:
                data["brand_context"] = self.store.get_brand_context(user_id, brand_id)
            return AgentOutcome.ok(data)

        if not (user_id and brand_id):
            return AgentOutcome.fail(f"Action '{action}' requires user_id and brand_id")

        if action == "update_constitution":
            if state.constitution is None:
                return AgentOutcome.fail("No brand constitution available to store")
            trigger = params.get("trigger", SnapshotTrigger.refresh.value)
            try:
                trigger = SnapshotTrigger(trigger)
            except ValueError:
                trigger = SnapshotTrigger.refresh
            memory = self.store.update_constitution(user_id, brand_id, state.constitution, trigger)
            return AgentOutcome.ok({"snapshots": len(memory.style_evolution)})

        if action == "log_asset":
            score = params.get("compliance_score")
            if score is None:
                return AgentOutcome.fail("log_asset requires compliance_score")
            asset = self.store.log_approved_asset(
                user_id,
                brand_id,
                asset_type=params.get("asset_type", "image"),
                platform=params.get("platform", "generic"),
                compliance_score=int(score),
                image_url=params.get("image_url"),
            )
            return AgentOutcome.ok({"asset_id": asset.id})

        if action == "record_correction":
            missing = [k for k in ("category", "original_value", "corrected_value") if not params.get(k)]
            if missing:
                return AgentOutcome.fail(f"record_correction missing: {', '.join(missing)}")
            pattern = self.store.record_correction(
                user_id, brand_id, params["category"], params["original_value"], params["corrected_value"]
            )
            return AgentOutcome.ok({"correction_id": pattern.id, "frequency": pattern.frequency})

        return AgentOutcome.fail(f"Unknown context_memory action '{action}'")
