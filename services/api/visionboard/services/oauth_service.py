"""Canva OAuth (authorization code + PKCE) and guest sessions."""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable
from urllib.parse import urlsplit

from visionboard.config import Settings
from visionboard.errors import IdentityResolutionFailed, InvalidPollToken, InvalidState, TokenExchangeFailed
from visionboard.metrics import oauth_callbacks_total
from visionboard.services.canva_client import CanvaAPIError, CanvaClient
from visionboard.services.identity_store import IdentityStore, PendingAuthorization, PollRecord, UserRecord
from visionboard.services.token_service import ProviderTokens

logger = logging.getLogger(__name__)

GENDERS = ("male", "female", "non_binary", "prefer_not_to_say")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_gender(value: object) -> str:
    if isinstance(value, str) and value.strip() in GENDERS:
        return value.strip()
    return "prefer_not_to_say"


def pkce_challenge(verifier: str) -> str:
    """S256 code challenge: unpadded base64url of sha256(verifier)."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def safe_return_to(value: str | None, base_url: str) -> str | None:
    """Accept app deep links (custom schemes) or URLs on our own host."""
    if not value:
        return None
    parts = urlsplit(value)
    if not parts.scheme:
        return None
    if parts.scheme in ("http", "https"):
        base = urlsplit(base_url)
        if (parts.scheme, parts.netloc) != (base.scheme, base.netloc):
            return None
    elif parts.scheme in ("javascript", "data", "file", "vbscript"):
        return None
    return value


def safe_origin(value: str | None) -> str | None:
    """Reduce an opener origin to ``scheme://host[:port]`` or reject it."""
    if not value:
        return None
    parts = urlsplit(value)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


@dataclass(frozen=True)
class AuthorizationStart:
    auth_url: str
    state: str
    poll_token: str | None


@dataclass(frozen=True)
class CallbackOutcome:
    user_token: str
    identity_id: str
    team_id: str | None
    return_to: str | None = None
    origin: str | None = None
    poll_token: str | None = None


@dataclass(frozen=True)
class GuestSession:
    identity_id: str
    user_token: str
    expires_at: datetime
    home_timezone: str | None
    gender: str


class OAuthConnector:
    """Drives the Canva authorization-code exchange and issues user tokens."""

    def __init__(
        self,
        settings: Settings,
        store: IdentityStore,
        canva: CanvaClient,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._settings = settings
        self._store = store
        self._canva = canva
        self._clock = clock

    async def build_authorization_url(
        self,
        *,
        return_to: str | None = None,
        origin: str | None = None,
        wants_poll: bool = False,
    ) -> AuthorizationStart:
        state = secrets.token_urlsafe(32)
        verifier = secrets.token_urlsafe(64)
        poll_token = secrets.token_urlsafe(32) if wants_poll else None

        await self._store.put_pkce_state(
            PendingAuthorization(
                state=state,
                code_verifier=verifier,
                created_at=self._clock(),
                poll_token=poll_token,
                return_to=safe_return_to(return_to, self._settings.base_url),
                origin=safe_origin(origin),
            )
        )
        if poll_token:
            await self._store.put_poll_record(poll_token)

        url = self._canva.authorize_url(state=state, code_challenge=pkce_challenge(verifier))
        return AuthorizationStart(auth_url=url, state=state, poll_token=poll_token)

    async def handle_callback(self, *, code: str, state: str) -> CallbackOutcome:
        # Consume the state before any upstream call so it cannot be replayed
        pending = await self._store.pop_pkce_state(state)
        if pending is None:
            oauth_callbacks_total.labels(outcome=InvalidState.code).inc()
            raise InvalidState("Unknown or already used OAuth state")

        ttl = timedelta(seconds=self._settings.pkce_state_ttl_seconds)
        if self._clock() - pending.created_at > ttl:
            oauth_callbacks_total.labels(outcome=InvalidState.code).inc()
            raise InvalidState("OAuth state expired")

        obtained_at = self._clock()
        try:
            payload = await self._canva.exchange_authorization_code(
                code=code, code_verifier=pending.code_verifier
            )
        except CanvaAPIError as e:
            oauth_callbacks_total.labels(outcome=TokenExchangeFailed.code).inc()
            raise TokenExchangeFailed(str(e)) from e
        if not payload.get("access_token"):
            oauth_callbacks_total.labels(outcome=TokenExchangeFailed.code).inc()
            raise TokenExchangeFailed("Token response had no access_token")
        tokens = ProviderTokens.from_token_response(payload, obtained_at)

        try:
            me = await self._canva.get_users_me(tokens.access_token)
        except CanvaAPIError as e:
            oauth_callbacks_total.labels(outcome=IdentityResolutionFailed.code).inc()
            raise IdentityResolutionFailed(str(e)) from e
        team_user = me.get("team_user") if isinstance(me, dict) else None
        identity_id = team_user.get("user_id") if isinstance(team_user, dict) else None
        if not identity_id:
            oauth_callbacks_total.labels(outcome=IdentityResolutionFailed.code).inc()
            raise IdentityResolutionFailed("users/me returned no user id")
        team_id = team_user.get("team_id")

        record, created = await self._store.connect_identity(
            identity_id, team_id=team_id, tokens=tokens, user_token=secrets.token_hex(24)
        )

        if pending.poll_token:
            await self._store.put_poll_record(
                pending.poll_token, user_token=record.user_token, identity_id=identity_id
            )

        oauth_callbacks_total.labels(outcome="success").inc()
        logger.info("Canva account connected (identity=%s, new=%s)", identity_id, created)
        return CallbackOutcome(
            user_token=record.user_token,
            identity_id=identity_id,
            team_id=team_id,
            return_to=pending.return_to,
            origin=pending.origin,
            poll_token=pending.poll_token,
        )

    async def create_guest_session(
        self,
        *,
        home_timezone: str | None = None,
        gender: str | None = None,
    ) -> GuestSession:
        expires_at = self._clock() + timedelta(days=self._settings.guest_session_days)
        record = UserRecord(
            identity_id=f"guest_{secrets.token_hex(16)}",
            user_token=secrets.token_hex(24),
            is_guest=True,
            guest_expires_at=expires_at,
        )
        await self._store.put_user(record)
        logger.info("Guest session issued (identity=%s)", record.identity_id)
        return GuestSession(
            identity_id=record.identity_id,
            user_token=record.user_token,
            expires_at=expires_at,
            home_timezone=home_timezone,
            gender=normalize_gender(gender),
        )

    async def get_poll_result(self, poll_token: str) -> PollRecord:
        record = await self._store.get_poll_record(poll_token)
        if record is None:
            raise InvalidPollToken("Unknown poll token")
        return record
