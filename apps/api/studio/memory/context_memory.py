"""
Session and brand memory.

Keyed, append-only logs with bounded retention:

- Session context (per session id): conversation turns, thought signatures,
  undo stack.
- Brand memory (per user id + brand id): current constitution, style
  snapshots, correction patterns, approved-asset log.

Records are created lazily on first reference and only removed by an explicit
clear. The store is constructed once per process and passed by reference.
Independent ids never contend; concurrent writers to the same id follow last
writer wins, with no internal locking.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple
from uuid import uuid4

from ..schemas import BrandConstitution

logger = logging.getLogger(__name__)

MAX_CONVERSATION_TURNS = 50
MAX_UNDO_ACTIONS = 20
MAX_APPROVED_ASSETS = 100
MAX_STYLE_SNAPSHOTS = 10
LEARNED_CORRECTION_FREQUENCY = 2


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ConversationTurn:
    role: str  # "user" | "agent"
    content: str
    timestamp: int = field(default_factory=_now_ms)
    agent_role: Optional[str] = None
    tools_called: List[str] = field(default_factory=list)


@dataclass
class UndoAction:
    action: str
    previous_state: Dict[str, Any]
    id: str = field(default_factory=lambda: f"undo_{uuid4().hex[:12]}")
    timestamp: int = field(default_factory=_now_ms)


@dataclass
class SessionContext:
    session_id: str
    start_time: int = field(default_factory=_now_ms)
    current_task: Optional[str] = None
    conversation_history: Deque[ConversationTurn] = field(
        default_factory=lambda: deque(maxlen=MAX_CONVERSATION_TURNS)
    )
    undo_stack: Deque[UndoAction] = field(default_factory=lambda: deque(maxlen=MAX_UNDO_ACTIONS))
    thought_signatures: Dict[str, str] = field(default_factory=dict)


class SnapshotTrigger(str, Enum):
    initial = "initial"
    refresh = "refresh"
    correction = "correction"
    upload = "upload"


@dataclass
class StyleSnapshot:
    constitution: BrandConstitution
    trigger: SnapshotTrigger
    timestamp: int = field(default_factory=_now_ms)


@dataclass
class CorrectionPattern:
    category: str  # color | typography | style | composition
    original_value: str
    corrected_value: str
    frequency: int = 1
    id: str = field(default_factory=lambda: f"corr_{uuid4().hex[:12]}")
    last_applied: int = field(default_factory=_now_ms)


@dataclass
class ApprovedAsset:
    type: str
    platform: str
    compliance_score: int
    image_url: Optional[str] = None
    id: str = field(default_factory=lambda: f"asset_{uuid4().hex[:12]}")
    created_at: int = field(default_factory=_now_ms)


@dataclass
class BrandMemory:
    user_id: str
    brand_id: str
    constitution: Optional[BrandConstitution] = None
    created_at: int = field(default_factory=_now_ms)
    updated_at: int = field(default_factory=_now_ms)
    approved_assets: Deque[ApprovedAsset] = field(default_factory=lambda: deque(maxlen=MAX_APPROVED_ASSETS))
    style_evolution: Deque[StyleSnapshot] = field(default_factory=lambda: deque(maxlen=MAX_STYLE_SNAPSHOTS))
    correction_patterns: List[CorrectionPattern] = field(default_factory=list)


class ContextMemoryStore:
    """In-process keyed memory for sessions and brands."""

    def __init__(self):
        self._sessions: Dict[str, SessionContext] = {}
        self._brands: Dict[Tuple[str, str], BrandMemory] = {}

    # ============ SESSION CACHE ============

    def get_session(self, session_id: str) -> SessionContext:
        """Return the session, creating it on first reference."""
        session = self._sessions.get(session_id)
        if session is None:
            session = SessionContext(session_id=session_id)
            self._sessions[session_id] = session
        return session

    def has_session(self, session_id: str) -> bool:
        return session_id in self._sessions

    def add_conversation_turn(
        self,
        session_id: str,
        role: str,
        content: str,
        agent_role: Optional[str] = None,
        tools_called: Optional[List[str]] = None,
    ) -> ConversationTurn:
        turn = ConversationTurn(role=role, content=content, agent_role=agent_role, tools_called=list(tools_called or []))
        self.get_session(session_id).conversation_history.append(turn)
        return turn

    def set_current_task(self, session_id: str, task: Optional[str]) -> None:
        self.get_session(session_id).current_task = task

    def store_thought_signature(self, session_id: str, part_id: str, signature: str) -> None:
        self.get_session(session_id).thought_signatures[part_id] = signature

    def get_thought_signatures(self, session_id: str) -> Dict[str, str]:
        return dict(self.get_session(session_id).thought_signatures)

    def push_undo_action(self, session_id: str, action: str, previous_state: Dict[str, Any]) -> UndoAction:
        undo = UndoAction(action=action, previous_state=previous_state)
        self.get_session(session_id).undo_stack.append(undo)
        return undo

    def pop_undo_action(self, session_id: str) -> Optional[UndoAction]:
        stack = self.get_session(session_id).undo_stack
        return stack.pop() if stack else None

    def clear_session(self, session_id: str) -> bool:
        """Drop a session. Returns True if it existed."""
        return self._sessions.pop(session_id, None) is not None

    # ============ BRAND MEMORY ============

    def get_brand_memory(self, user_id: str, brand_id: str) -> BrandMemory:
        """Return brand memory, creating an empty record on first reference."""
        key = (user_id, brand_id)
        memory = self._brands.get(key)
        if memory is None:
            memory = BrandMemory(user_id=user_id, brand_id=brand_id)
            self._brands[key] = memory
        return memory

    def has_brand_memory(self, user_id: str, brand_id: str) -> bool:
        return (user_id, brand_id) in self._brands

    def update_constitution(
        self,
        user_id: str,
        brand_id: str,
        constitution: BrandConstitution,
        trigger: SnapshotTrigger = SnapshotTrigger.refresh,
    ) -> BrandMemory:
        """Replace the constitution, snapshotting the previous one."""
        memory = self.get_brand_memory(user_id, brand_id)
        if memory.constitution is not None:
            memory.style_evolution.append(StyleSnapshot(constitution=memory.constitution, trigger=trigger))
        memory.constitution = constitution
        memory.updated_at = _now_ms()
        return memory

    def record_correction(
        self,
        user_id: str,
        brand_id: str,
        category: str,
        original_value: str,
        corrected_value: str,
    ) -> CorrectionPattern:
        """Count a user correction; repeated corrections become learned preferences."""
        memory = self.get_brand_memory(user_id, brand_id)
        for pattern in memory.correction_patterns:
            if pattern.category == category and pattern.original_value == original_value:
                pattern.corrected_value = corrected_value
                pattern.frequency += 1
                pattern.last_applied = _now_ms()
                return pattern

        pattern = CorrectionPattern(category=category, original_value=original_value, corrected_value=corrected_value)
        memory.correction_patterns.append(pattern)
        return pattern

    def get_applicable_corrections(self, user_id: str, brand_id: str) -> List[CorrectionPattern]:
        memory = self.get_brand_memory(user_id, brand_id)
        return [p for p in memory.correction_patterns if p.frequency >= LEARNED_CORRECTION_FREQUENCY]

    def log_approved_asset(
        self,
        user_id: str,
        brand_id: str,
        asset_type: str,
        platform: str,
        compliance_score: int,
        image_url: Optional[str] = None,
    ) -> ApprovedAsset:
        asset = ApprovedAsset(type=asset_type, platform=platform, compliance_score=compliance_score, image_url=image_url)
        memory = self.get_brand_memory(user_id, brand_id)
        memory.approved_assets.append(asset)
        memory.updated_at = _now_ms()
        return asset

    def get_brand_context(self, user_id: str, brand_id: str) -> str:
        """Plain-text summary of what has been learned about a brand."""
        if not self.has_brand_memory(user_id, brand_id):
            return "No brand memory available."

        memory = self.get_brand_memory(user_id, brand_id)
        corrections = "\n".join(
            f'- {p.category}: prefer "{p.corrected_value}" over "{p.original_value}"'
            for p in self.get_applicable_corrections(user_id, brand_id)
        )
        assets = "\n".join(
            f"- {a.type} for {a.platform} (score: {a.compliance_score})"
            for a in list(memory.approved_assets)[-5:]
        )
        updated = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(memory.updated_at / 1000))

        return (
            "Brand Memory Summary:\n"
            f"- Constitution last updated: {updated}\n"
            f"- Total approved assets: {len(memory.approved_assets)}\n"
            f"- Style snapshots: {len(memory.style_evolution)}\n"
            "\n"
            "Learned Preferences:\n"
            f"{corrections or 'None yet'}\n"
            "\n"
            "Recent Assets:\n"
            f"{assets or 'None yet'}"
        )

    def clear_brand(self, user_id: str, brand_id: str) -> bool:
        return self._brands.pop((user_id, brand_id), None) is not None
