"""
Compliance Auditor agent.

Scores an image against a BrandConstitution. The verdict is advisory: the
auditor never triggers regeneration itself, the caller decides on ``passed``.
"""

import json
import logging
from typing import Optional

from ..core.config import settings
from ..llm_backend import BackendError, CompletionOptions, GenerationBackend, ImagePart, LatencyClass, TextPart
from ..llm_retry import describe_backend_failure
from ..schemas import AuditResult, BrandConstitution
from .parsing import parse_json_response
from .types import AgentOutcome

logger = logging.getLogger(__name__)

AUDIT_PROMPT = """You are the Brand Compliance Auditor.
Audit the attached image against this Brand Constitution:
{constitution}

Score adherence across colour, typography, style, composition and forbidden elements.

Respond with JSON only:
{{
  "compliance_score": <number 0-100>,
  "pass": <true if score >= {threshold}>,
  "heatmap_coordinates": [
    {{"x": <0-100>, "y": <0-100>, "issue": "<description>",
      "category": "color" | "typography" | "composition" | "style" | "forbidden",
      "severity": "critical" | "warning" | "minor", "suggestion": "<how to fix>"}}
  ],
  "fix_instructions": "<instructions for a regeneration>",
  "strengths": ["<what the image does well>"]
}}"""


class ComplianceAuditorAgent:
    """Scores generated assets against the brand constitution."""

    def __init__(self, backend: GenerationBackend, pass_threshold: Optional[int] = None):
        self.backend = backend
        self.pass_threshold = pass_threshold if pass_threshold is not None else settings.AUDIT_PASS_THRESHOLD

    async def audit_asset(
        self,
        image: bytes,
        constitution: Optional[BrandConstitution],
        mime_type: str = "image/png",
    ) -> AgentOutcome:
        """
        Audit one image.

        Args:
            image: Raw image bytes
            constitution: Constitution to audit against
            mime_type: Image MIME type

        Returns:
            AgentOutcome whose data is an AuditResult
        """
        if not image:
            return AgentOutcome.fail("No image available to audit")
        if constitution is None:
            return AgentOutcome.fail("No brand constitution available for audit")

        prompt = AUDIT_PROMPT.format(
            constitution=json.dumps(constitution.model_dump(mode="json"), indent=2),
            threshold=self.pass_threshold,
        )

        try:
            completion = await self.backend.complete(
                [ImagePart(data=image, mime_type=mime_type), TextPart(prompt)],
                CompletionOptions(latency=LatencyClass.AUDIT, json_output=True, temperature=0.7),
            )
        except BackendError as e:
            logger.error(f"Compliance audit failed: {e}", exc_info=True)
            return AgentOutcome.fail(describe_backend_failure(e, "Compliance audit"))
        except Exception as e:
            logger.error(f"Unexpected error in compliance audit: {e}", exc_info=True)
            return AgentOutcome.fail(f"Compliance audit failed: {e}")

        data = parse_json_response(completion.text)
        if data is None:
            logger.warning("Compliance audit returned unparsable JSON, recommending manual review")
            result = AuditResult.unparsable(self.pass_threshold)
        else:
            result = AuditResult.from_backend(data, self.pass_threshold)

        logger.info(f"Audit complete: score={result.compliance_score} pass={result.passed}")
        return AgentOutcome.ok(result)
