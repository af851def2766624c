"""
Trend Scout agent.

Search-grounded research into current platform trends. Trend data is
advisory, so every failure degrades to an empty but valid TrendResearch.
"""

import logging
from typing import Optional, Sequence

from ..llm_backend import BackendError, CompletionOptions, GenerationBackend, LatencyClass, TextPart
from ..schemas import TrendResearch
from .parsing import parse_json_response
from .types import AgentOutcome

logger = logging.getLogger(__name__)

DEFAULT_PLATFORMS = ["YouTube", "TikTok", "Instagram"]
DEFAULT_NICHE = "content creation"

TREND_PROMPT = """Research current visual and content trends for: "{query}"

Platforms to analyse: {platforms}
Niche/Industry: {niche}

1. Search for current trending styles and formats.
2. Identify platform-specific trends.
3. Note seasonal or cultural relevance.
4. Give actionable recommendations for brand content.

Return ONLY a JSON object:
{{
  "platform_trends": [
    {{"platform": "YouTube", "trending_styles": ["..."], "trending_colors": ["#XXXXXX"], "trending_formats": ["..."]}}
  ],
  "competitor_insights": [{{"observation": "...", "opportunity": "..."}}],
  "seasonal_relevance": ["..."],
  "recommendation": "summary recommendation for the brand"
}}"""


class TrendScoutAgent:
    """Researches current trends with search grounding."""

    def __init__(self, backend: GenerationBackend):
        self.backend = backend

    async def research_trends(
        self,
        query: str,
        platforms: Optional[Sequence[str]] = None,
        niche: Optional[str] = None,
    ) -> AgentOutcome:
        """
        Research trends for a topic.

        Always succeeds: backend or parse failures yield ``TrendResearch.empty()``.
        """
        prompt = TREND_PROMPT.format(
            query=query,
            platforms=", ".join(platforms or DEFAULT_PLATFORMS),
            niche=niche or DEFAULT_NICHE,
        )

        try:
            completion = await self.backend.complete(
                [TextPart(prompt)],
                CompletionOptions(latency=LatencyClass.FAST, use_search=True),
            )
        except BackendError as e:
            logger.warning(f"Trend research unavailable, returning empty result: {e}")
            return AgentOutcome.ok(TrendResearch.empty())
        except Exception as e:
            logger.error(f"Unexpected error in trend research: {e}", exc_info=True)
            return AgentOutcome.ok(TrendResearch.empty())

        data = parse_json_response(completion.text)
        if data is None:
            logger.warning("Trend research returned unparsable JSON")
            return AgentOutcome.ok(TrendResearch.empty())

        research = TrendResearch.model_validate(data)
        if completion.sources and not research.sources:
            research = research.model_copy(update={"sources": completion.sources})
        return AgentOutcome.ok(research)

    async def get_platform_trends(self, platform: str):
        """Trends for a single platform, or None when nothing was found."""
        outcome = await self.research_trends(f"{platform} content trends", platforms=[platform])
        research: TrendResearch = outcome.data
        for trend in research.platform_trends:
            if trend.platform.lower() == platform.lower():
                return trend
        return None
