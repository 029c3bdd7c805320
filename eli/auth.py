"""
Identity Provider
------------------
Validates dashboard bearer tokens and resolves them to a Principal.

  StaticTokenIdentityProvider -- token table from config (tests, single-tenant)
  SupabaseIdentityProvider    -- GET {SUPABASE_URL}/auth/v1/user with the token

A provider answers "who is this" or None; it never raises for a bad
token.  Transport failures are retried, then propagate.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from loguru import logger
from pydantic import BaseModel
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from eli.config import AuthSettings


class Principal(BaseModel):
    """The authenticated staff member behind an internal-surface request."""

    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    employers: Optional[list[str]] = None   # None = unrestricted learner access

    def label(self) -> str:
        return self.email or self.id


def bearer_token(header: Optional[str]) -> Optional[str]:
    """Extract the credential from an `Authorization: Bearer <token>` header."""
    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityProvider(ABC):
    @abstractmethod
    async def validate(self, token: str) -> Optional[Principal]:
        ...


class StaticTokenIdentityProvider(IdentityProvider):
    def __init__(self, tokens: dict[str, Principal]) -> None:
        self._tokens = dict(tokens)

    async def validate(self, token: str) -> Optional[Principal]:
        return self._tokens.get(token)


class SupabaseIdentityProvider(IdentityProvider):
    """Asks the Supabase auth API who owns the access token."""

    def __init__(self, url: str, anon_key: str, timeout: float = 10.0) -> None:
        self._endpoint = url.rstrip("/") + "/auth/v1/user"
        self._anon_key = anon_key
        self._timeout = timeout

    async def validate(self, token: str) -> Optional[Principal]:
        response = await self._get_user(token)
        if response.status_code != 200:
            logger.info(f"[Auth] Token rejected by identity provider (HTTP {response.status_code})")
            return None
        return self._to_principal(response.json())

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _get_user(self, token: str) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            return await client.get(
                self._endpoint,
                headers={"apikey": self._anon_key, "Authorization": f"Bearer {token}"},
            )

    @staticmethod
    def _to_principal(user: dict[str, Any]) -> Principal:
        meta = user.get("app_metadata") or {}
        employers = meta.get("employers")
        return Principal(
            id=str(user["id"]),
            email=user.get("email"),
            role=meta.get("role") or user.get("role"),
            employers=list(employers) if employers else None,
        )


def build_identity_provider(settings: AuthSettings) -> IdentityProvider:
    if settings.provider == "supabase":
        if not settings.supabase_url or not settings.supabase_anon_key:
            raise ValueError("auth.provider=supabase requires SUPABASE_URL and SUPABASE_ANON_KEY")
        return SupabaseIdentityProvider(settings.supabase_url, settings.supabase_anon_key)

    tokens = {
        token: Principal(**entry.model_dump())
        for token, entry in settings.static_tokens.items()
    }
    return StaticTokenIdentityProvider(tokens)
