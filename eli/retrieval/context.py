"""
Retrieval Context Assembler
----------------------------
Turns ranked results into (a) the context block placed in the system
prompt and (b) an optional deterministic course recommendation.

The recommendation is a carousel directive built from the top route-type
results.  It is handed to the model as a verbatim instruction instead of
being left to the model's own formatting, so recommendation UI does not
depend on the model following the protocol.  It is only built when:

  - the user message has course intent
  - at least `min_sources` route results with a title were retrieved
  - the surface's policy allows recommendations (public only)
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger

from eli.config import RecommendationSettings
from eli.directives import format_directive
from eli.generation.prompts import CONTEXT_ENTRY_TEMPLATE
from eli.schemas import CarouselComponent, CarouselData, RetrievalResult, Surface, UICard
from eli.surfaces import profile_for
from eli.utils.helpers import single_line

COURSE_INTENT = re.compile(r"cours|apprentice|program|training|learning|study", re.IGNORECASE)

# Ingestion sometimes leaves the context tag in a title: "[Source: X (strapi_course)]"
_TITLE_PREFIX = re.compile(r"^\s*\[Source:\s*")
_TITLE_SUFFIX = re.compile(r"\s*\([^()]*\)\]\s*$")


def is_course_query(message: str) -> bool:
    return bool(COURSE_INTENT.search(message or ""))


def clean_title(title: str) -> str:
    return _TITLE_SUFFIX.sub("", _TITLE_PREFIX.sub("", title)).strip()


@dataclass
class AssembledContext:
    context_block: str
    is_course_query: bool
    route_sources: list[RetrievalResult] = field(default_factory=list)
    recommendation: Optional[CarouselComponent] = None

    @property
    def sources_found(self) -> int:
        return len(self.route_sources)

    @property
    def recommendation_token(self) -> Optional[str]:
        if self.recommendation is None:
            return None
        return format_directive(self.recommendation.model_dump(mode="json", exclude_none=True))


class ContextAssembler:
    def __init__(self, settings: RecommendationSettings, home_url: str) -> None:
        self.settings = settings
        self.home_url = home_url

    def build_context_block(self, results: list[RetrievalResult]) -> str:
        return "\n\n".join(
            CONTEXT_ENTRY_TEMPLATE.format(title=r.title, source_type=r.source_type, content=r.content)
            for r in results
        )

    def _card(self, result: RetrievalResult) -> UICard:
        limit = self.settings.description_chars
        return UICard(
            title=clean_title(result.title),
            description=single_line(result.content[:limit]).strip() + "...",
            url=result.url or self.home_url,
        )

    def assemble(
        self,
        results: list[RetrievalResult],
        user_message: str,
        surface: Surface,
    ) -> AssembledContext:
        course_query = is_course_query(user_message)
        route_sources = [
            r for r in results
            if r.source_type == self.settings.route_source_type and r.title
        ]

        recommendation = None
        if (
            course_query
            and len(route_sources) >= self.settings.min_sources
            and profile_for(surface).recommendations
        ):
            items = [self._card(r) for r in route_sources[: self.settings.max_items]]
            recommendation = CarouselComponent(data=CarouselData(items=items))

        logger.info(
            f"[Assembler] course_query={course_query} | route_sources={len(route_sources)} | "
            f"recommendation={'yes' if recommendation else 'no'} | surface={Surface(surface).value}"
        )
        return AssembledContext(
            context_block=self.build_context_block(results),
            is_course_query=course_query,
            route_sources=route_sources,
            recommendation=recommendation,
        )
