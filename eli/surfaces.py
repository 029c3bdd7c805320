"""
Persona & Tool Selector
------------------------
Each surface is a closed variant carrying its own prompt template, tool
set, identity requirement and recommendation policy:

  PUBLIC    website visitors    no identity, sales persona, no tools, recommendations on
  INTERNAL  staff dashboard     bearer token,  fact persona, data tools, recommendations off

The selection is made once per request, before retrieval.  An internal
request without a valid credential is a hard 401; it is never downgraded
to public behaviour.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from loguru import logger

from eli.auth import IdentityProvider, Principal, bearer_token
from eli.config import ProjectSettings
from eli.errors import Unauthorized
from eli.generation.prompts import (
    INTERNAL_SYSTEM_PROMPT,
    NO_CONTEXT_NOTE,
    PUBLIC_SYSTEM_PROMPT,
    RECOMMENDATION_INSTRUCTION,
)
from eli.schemas import PageContext, Surface
from eli.tools.dashboard import ToolRegistry


@dataclass(frozen=True)
class SurfaceProfile:
    surface: Surface
    template: str
    requires_identity: bool
    tools_enabled: bool
    recommendations: bool


PUBLIC_PROFILE = SurfaceProfile(
    surface=Surface.PUBLIC,
    template=PUBLIC_SYSTEM_PROMPT,
    requires_identity=False,
    tools_enabled=False,
    recommendations=True,
)

INTERNAL_PROFILE = SurfaceProfile(
    surface=Surface.INTERNAL,
    template=INTERNAL_SYSTEM_PROMPT,
    requires_identity=True,
    tools_enabled=True,
    recommendations=False,
)

_PROFILES = {p.surface: p for p in (PUBLIC_PROFILE, INTERNAL_PROFILE)}


def profile_for(surface: Surface) -> SurfaceProfile:
    return _PROFILES[Surface(surface)]


@dataclass
class PersonaSelection:
    profile: SurfaceProfile
    tools: list[dict[str, Any]]
    principal: Optional[Principal] = None

    def system_prompt(
        self,
        project: ProjectSettings,
        context_block: str,
        recommendation_token: Optional[str] = None,
        page: Optional[PageContext] = None,
        today: Optional[date] = None,
    ) -> str:
        recommendation_block = ""
        if recommendation_token and self.profile.recommendations:
            recommendation_block = RECOMMENDATION_INSTRUCTION.format(token=recommendation_token)

        return self.profile.template.format(
            assistant_name=project.assistant_name,
            organisation=project.organisation,
            home_url=project.home_url,
            recommendation_block=recommendation_block,
            context=context_block or NO_CONTEXT_NOTE,
            surface=self.profile.surface.value,
            page_title=(page.title if page and page.title else "Unknown"),
            page_url=(page.url if page and page.url else "Unknown"),
            principal=(self.principal.label() if self.principal else "unknown"),
            today=(today or date.today()).isoformat(),
        )


class PersonaSelector:
    """Resolves a surface (+ credential) to a persona, tool set and principal."""

    def __init__(self, identity: IdentityProvider, tools: ToolRegistry) -> None:
        self.identity = identity
        self.tools = tools

    async def select(self, surface: Surface, authorization: Optional[str]) -> PersonaSelection:
        profile = profile_for(surface)
        if not profile.requires_identity:
            return PersonaSelection(profile=profile, tools=[])

        token = bearer_token(authorization)
        if token is None:
            logger.warning("[Surfaces] Internal surface request without bearer credential")
            raise Unauthorized()

        try:
            principal = await self.identity.validate(token)
        except Exception as exc:
            logger.error(f"[Surfaces] Identity provider unavailable: {exc}")
            raise Unauthorized() from exc

        if principal is None:
            logger.warning("[Surfaces] Internal surface credential rejected")
            raise Unauthorized()

        logger.info(f"[Surfaces] Internal surface | principal={principal.id}")
        tools = self.tools.definitions if profile.tools_enabled else []
        return PersonaSelection(profile=profile, tools=tools, principal=principal)
