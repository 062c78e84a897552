"""Canva token lifecycle: decide when to refresh and produce the new token bundle."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable

from visionboard.errors import NotConnected, RefreshFailed, RefreshTokenMissing
from visionboard.metrics import token_refresh_total
from visionboard.services.canva_client import CanvaAPIError, CanvaClient

if TYPE_CHECKING:
    from visionboard.services.identity_store import IdentityStore, UserRecord

logger = logging.getLogger(__name__)

REFRESH_MARGIN = timedelta(seconds=60)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ProviderTokens:
    """Immutable Canva token bundle for one identity."""

    access_token: str | None
    refresh_token: str | None = None
    expires_in: int | None = None
    obtained_at: datetime | None = None
    token_type: str | None = None
    scope: str | None = None

    @classmethod
    def from_token_response(cls, payload: dict[str, Any], obtained_at: datetime) -> ProviderTokens:
        expires_in = payload.get("expires_in")
        return cls(
            access_token=payload.get("access_token"),
            refresh_token=payload.get("refresh_token"),
            expires_in=int(expires_in) if isinstance(expires_in, (int, float)) else None,
            obtained_at=obtained_at,
            token_type=payload.get("token_type"),
            scope=payload.get("scope"),
        )

    @property
    def expires_at(self) -> datetime | None:
        if self.obtained_at is None or self.expires_in is None:
            return None
        return self.obtained_at + timedelta(seconds=self.expires_in)

    def needs_refresh(self, now: datetime) -> bool:
        """True once ``now`` is within the safety margin of expiry.

        Bundles with unknown expiry are used as-is.
        """
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return now >= expires_at - REFRESH_MARGIN

    def refreshed_with(self, payload: dict[str, Any], obtained_at: datetime) -> ProviderTokens:
        """New bundle after a refresh; optional fields keep their old values when omitted."""
        expires_in = payload.get("expires_in")
        return dataclasses.replace(
            self,
            access_token=payload["access_token"],
            obtained_at=obtained_at,
            expires_in=int(expires_in) if isinstance(expires_in, (int, float)) else self.expires_in,
            refresh_token=payload.get("refresh_token") or self.refresh_token,
            token_type=payload.get("token_type") or self.token_type,
        )


@dataclass(frozen=True)
class TokenRefresh:
    """A usable token bundle and whether it changed (and so must be persisted)."""

    tokens: ProviderTokens
    refreshed: bool

    @property
    def access_token(self) -> str:
        if not self.tokens.access_token:
            raise NotConnected("No Canva access token stored")
        return self.tokens.access_token


class TokenLifecycleManager:
    """Hands out access tokens, refreshing them before they expire.

    The manager never writes to the store; callers persist the returned bundle
    when ``refreshed`` is set.
    """

    def __init__(self, canva: CanvaClient, clock: Callable[[], datetime] = _utcnow) -> None:
        self._canva = canva
        self._clock = clock

    async def get_valid_access_token(self, tokens: ProviderTokens | None) -> TokenRefresh:
        if tokens is None or not tokens.access_token:
            raise NotConnected("No Canva access token stored")

        now = self._clock()
        if not tokens.needs_refresh(now):
            return TokenRefresh(tokens=tokens, refreshed=False)

        if not tokens.refresh_token:
            raise RefreshTokenMissing("Canva token expired and no refresh token is stored")

        try:
            payload = await self._canva.refresh_access_token(refresh_token=tokens.refresh_token)
        except CanvaAPIError as e:
            token_refresh_total.labels(outcome="failed").inc()
            raise RefreshFailed(str(e)) from e

        if not payload.get("access_token"):
            token_refresh_total.labels(outcome="failed").inc()
            raise RefreshFailed("Canva refresh response had no access_token")

        token_refresh_total.labels(outcome="refreshed").inc()
        logger.info("Canva access token refreshed (expired_at=%s)", tokens.expires_at)
        return TokenRefresh(tokens=tokens.refreshed_with(payload, self._clock()), refreshed=True)


async def resolve_access_token(
    user: UserRecord,
    store: IdentityStore,
    manager: TokenLifecycleManager,
) -> tuple[str, UserRecord]:
    """Return a valid access token for ``user``, persisting a refreshed bundle."""
    result = await manager.get_valid_access_token(user.tokens)
    if result.refreshed:
        user = dataclasses.replace(user, tokens=result.tokens)
        await store.save_tokens(user.identity_id, result.tokens)
    return result.access_token, user
