"""
Generation backend abstraction.

The orchestration core depends on one capability only:

    complete(parts, options) -> Completion(text?, image_bytes?)

where ``parts`` is an ordered list of text and inline-image parts. Any
multimodal model server satisfying that shape can be substituted. The Gemini
adapter below is the production implementation; vendor quirks stay inside it.
"""

import base64
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence, Union

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from .core.config import settings

logger = logging.getLogger(__name__)


# ============ ERRORS ============

class BackendError(Exception):
    """Non-transient backend failure (bad request, blocked content, ...)."""

    kind = "other"

    def __init__(self, message: str, attempts: int = 1):
        super().__init__(message)
        self.attempts = attempts


class BackendUnavailableError(BackendError):
    """5xx-equivalent or rate limited. Transient."""

    kind = "unavailable"


class BackendTimeoutError(BackendError):
    """The call exceeded its deadline or was aborted. Transient."""

    kind = "timeout"


class BackendConfigurationError(BackendError):
    """The backend cannot be used at all (e.g. missing API key)."""

    kind = "configuration"


TRANSIENT_ERRORS = (BackendUnavailableError, BackendTimeoutError)


# ============ REQUEST / RESPONSE ============

class LatencyClass(str, Enum):
    """Expected latency of a call; picks the model and the per-call timeout."""
    FAST = "fast"
    ANALYSIS = "analysis"
    AUDIT = "audit"
    IMAGE = "image"


def timeout_for(latency: LatencyClass) -> float:
    return {
        LatencyClass.FAST: settings.FAST_TIMEOUT_SECONDS,
        LatencyClass.ANALYSIS: settings.ANALYSIS_TIMEOUT_SECONDS,
        LatencyClass.AUDIT: settings.AUDIT_TIMEOUT_SECONDS,
        LatencyClass.IMAGE: settings.IMAGE_TIMEOUT_SECONDS,
    }[latency]


def model_for(latency: LatencyClass) -> str:
    return {
        LatencyClass.FAST: settings.FAST_MODEL,
        LatencyClass.ANALYSIS: settings.TEXT_MODEL,
        LatencyClass.AUDIT: settings.TEXT_MODEL,
        LatencyClass.IMAGE: settings.IMAGE_MODEL,
    }[latency]


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    data: bytes
    mime_type: str = "image/png"


PromptPart = Union[TextPart, ImagePart]


@dataclass
class CompletionOptions:
    latency: LatencyClass = LatencyClass.ANALYSIS
    json_output: bool = False
    temperature: Optional[float] = None
    timeout_seconds: Optional[float] = None
    want_image: bool = False
    aspect_ratio: Optional[str] = None
    use_search: bool = False
    system_instruction: Optional[str] = None

    @property
    def effective_timeout(self) -> float:
        return self.timeout_seconds or timeout_for(self.latency)


@dataclass
class Completion:
    text: Optional[str] = None
    image_bytes: Optional[bytes] = None
    image_mime_type: Optional[str] = None
    thoughts: Optional[str] = None
    thought_signature: Optional[str] = None
    sources: List[str] = field(default_factory=list)


class GenerationBackend(ABC):
    """Anything that can answer a multimodal prompt."""

    @abstractmethod
    async def complete(self, parts: Sequence[PromptPart], options: CompletionOptions) -> Completion:
        """Run one completion.

        Raises:
            BackendError: or one of its subclasses
        """


# ============ GEMINI ADAPTER ============

SUPPORTED_ASPECT_RATIOS = {"1:1", "16:9", "9:16", "4:3", "3:4"}


class GeminiBackend(GenerationBackend):
    """Gemini via the google-genai SDK."""

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or settings.GEMINI_API_KEY
        self._client: Optional[genai.Client] = None

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise BackendConfigurationError("GEMINI_API_KEY is not configured")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    def _build_contents(self, parts: Sequence[PromptPart]) -> List[types.Part]:
        contents = []
        for part in parts:
            if isinstance(part, ImagePart):
                contents.append(types.Part.from_bytes(data=part.data, mime_type=part.mime_type))
            else:
                contents.append(types.Part.from_text(text=part.text))
        return contents

    def _build_config(self, options: CompletionOptions) -> types.GenerateContentConfig:
        config = {}
        if options.temperature is not None:
            config["temperature"] = options.temperature
        if options.system_instruction:
            config["system_instruction"] = options.system_instruction
        if options.want_image:
            config["response_modalities"] = ["IMAGE", "TEXT"]
            if options.aspect_ratio in SUPPORTED_ASPECT_RATIOS:
                config["image_config"] = types.ImageConfig(aspect_ratio=options.aspect_ratio)
        if options.use_search:
            # Search grounding rejects a JSON response mime type
            config["tools"] = [types.Tool(google_search=types.GoogleSearch())]
        elif options.json_output:
            # Plain JSON mime type only: response schemas are not combined with inline images
            config["response_mime_type"] = "application/json"
        return types.GenerateContentConfig(**config)

    async def complete(self, parts: Sequence[PromptPart], options: CompletionOptions) -> Completion:
        model = model_for(options.latency)
        try:
            response = await self.client.aio.models.generate_content(
                model=model,
                contents=self._build_contents(parts),
                config=self._build_config(options),
            )
        except genai_errors.ServerError as e:
            raise BackendUnavailableError(f"Gemini API server error ({e.code}): {e.message}") from e
        except genai_errors.ClientError as e:
            if e.code == 429:
                raise BackendUnavailableError(f"Gemini API rate limited: {e.message}") from e
            raise BackendError(f"Gemini API request rejected ({e.code}): {e.message}") from e
        except httpx.TimeoutException as e:
            raise BackendTimeoutError(f"Gemini API request timed out: {e}") from e
        except httpx.TransportError as e:
            raise BackendUnavailableError(f"Gemini API unreachable: {e}") from e

        return self._parse_response(response)

    def _parse_response(self, response) -> Completion:
        completion = Completion()
        texts, thoughts = [], []

        candidates = response.candidates or []
        if not candidates:
            raise BackendError("Gemini returned no candidates")

        candidate = candidates[0]
        content_parts = (candidate.content.parts if candidate.content else None) or []
        for part in content_parts:
            if getattr(part, "thought_signature", None) and completion.thought_signature is None:
                signature = part.thought_signature
                if isinstance(signature, bytes):
                    signature = base64.b64encode(signature).decode("ascii")
                completion.thought_signature = signature
            if part.inline_data and part.inline_data.data:
                data = part.inline_data.data
                if isinstance(data, str):
                    data = base64.b64decode(data)
                completion.image_bytes = data
                completion.image_mime_type = part.inline_data.mime_type or "image/png"
            elif part.text:
                (thoughts if part.thought else texts).append(part.text)

        completion.text = "".join(texts) or None
        completion.thoughts = "\n".join(thoughts) or None

        grounding = getattr(candidate, "grounding_metadata", None)
        for chunk in (getattr(grounding, "grounding_chunks", None) or []):
            web = getattr(chunk, "web", None)
            if web is not None and web.uri:
                completion.sources.append(web.uri)

        return completion
