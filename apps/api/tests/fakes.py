"""
Test doubles shared by the test modules.

FakeBackend answers every generation call from per-kind scripts, so no test
ever reaches the real Gemini API.
"""

import base64
import json
from collections import defaultdict, deque
from typing import Any, Deque, Dict, List, Tuple

from studio.agents.planner import ORCHESTRATOR_SYSTEM_PROMPT
from studio.llm_backend import (
    Completion,
    CompletionOptions,
    GenerationBackend,
    ImagePart,
    LatencyClass,
    PromptPart,
)
from studio.schemas import BrandConstitution, CanvasElement


PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32

CONSTITUTION_JSON = {
    "visual_identity": {
        "color_palette_hex": ["#FF5500", "#111111"],
        "photography_style": "High-contrast studio shots",
        "forbidden_elements": ["clip art"],
        "fonts": ["Archivo Black"],
        "composition_rules": ["Subject on the left third"],
        "signature_elements": ["orange glow"],
        "visual_density": "dense",
    },
    "voice": {
        "tone": "Energetic",
        "keywords": ["bold", "fast"],
        "vocabulary_level": "simple",
    },
    "brand_essence": "Loud, fast, unapologetic.",
}

PASSING_AUDIT = {
    "compliance_score": 92,
    "pass": True,
    "heatmap_coordinates": [],
    "fix_instructions": "",
    "strengths": ["Palette matches"],
}

FAILING_AUDIT = {
    "compliance_score": 40,
    "pass": False,
    "heatmap_coordinates": [
        {"x": 20, "y": 30, "issue": "Off-palette blue background", "severity": "critical",
         "suggestion": "Use #FF5500 for the background"},
    ],
    "fix_instructions": "Replace the blue background with brand orange.",
}

TRENDS_JSON = {
    "platform_trends": [
        {"platform": "YouTube", "trending_styles": ["big faces"], "trending_colors": ["#FFEE00"],
         "trending_formats": ["split screen"]},
    ],
    "competitor_insights": [{"observation": "Everyone uses red arrows", "opportunity": "Use orange circles"}],
    "seasonal_relevance": ["back to school"],
    "recommendation": "Lean into bold faces with brand orange.",
}


def classify(parts, options: CompletionOptions) -> str:
    """Which agent made this call."""
    if options.want_image:
        return "image"
    if options.use_search:
        return "trends"
    if options.latency == LatencyClass.AUDIT:
        return "audit"
    if options.system_instruction == ORCHESTRATOR_SYSTEM_PROMPT:
        return "plan"
    if options.system_instruction:
        return "decide"
    if any(isinstance(p, ImagePart) for p in parts):
        return "analyze"
    return "refine"


DEFAULTS = {
    "plan": lambda: Completion(text="[]"),
    "decide": lambda: Completion(text=json.dumps(
        {"tool": "complete_task", "args": {"success": False, "message": "Nothing scripted"}}
    )),
    "analyze": lambda: Completion(text=json.dumps(CONSTITUTION_JSON)),
    "image": lambda: Completion(text="A bold thumbnail", image_bytes=PNG_BYTES, image_mime_type="image/png"),
    "audit": lambda: Completion(text=json.dumps(PASSING_AUDIT)),
    "refine": lambda: Completion(text="Refined prompt: brand orange background, subject on the left third"),
    "trends": lambda: Completion(text=json.dumps(TRENDS_JSON), sources=["https://example.com/trends"]),
}


class FakeBackend(GenerationBackend):
    """
    Scripted backend.

    ``script(kind, *responses)`` queues answers for one call kind. A response
    may be a Completion, a string (used as the completion text), an exception
    (raised) or an async callable ``(parts, options) -> Completion``. Kinds
    without a queued answer get the matching DEFAULTS entry.
    """

    def __init__(self):
        self.queues: Dict[str, Deque[Any]] = defaultdict(deque)
        self.calls: List[Tuple[str, List[PromptPart], CompletionOptions]] = []

    def script(self, kind: str, *responses) -> "FakeBackend":
        self.queues[kind].extend(responses)
        return self

    def count(self, kind: str) -> int:
        return sum(1 for call in self.calls if call[0] == kind)

    async def complete(self, parts, options: CompletionOptions) -> Completion:
        kind = classify(parts, options)
        self.calls.append((kind, list(parts), options))

        response = self.queues[kind].popleft() if self.queues[kind] else DEFAULTS[kind]()
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            response = await response(parts, options)
        if isinstance(response, str):
            return Completion(text=response)
        return response


def plan_json(*entries: Dict[str, Any]) -> str:
    return json.dumps(list(entries))


def tool_call(tool: str, thinking: str = "", **args) -> str:
    return json.dumps({"thinking": thinking, "tool": tool, "args": args})


def image_element(element_id: str = "img-1", name: str = "Hero shot") -> CanvasElement:
    url = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
    return CanvasElement(id=element_id, type="image", url=url, name=name)


def note_element(text: str, element_id: str = "note-1") -> CanvasElement:
    return CanvasElement(id=element_id, type="note", text=text)


def sample_constitution() -> BrandConstitution:
    return BrandConstitution.from_backend(CONSTITUTION_JSON)


def parse_sse(body: str) -> List[Tuple[str, Any]]:
    """Split an SSE body into (event, decoded data) pairs."""
    frames = []
    for block in body.strip().split("\n\n"):
        event, data = "message", None
        for line in block.splitlines():
            if line.startswith("event: "):
                event = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        frames.append((event, data))
    return frames
