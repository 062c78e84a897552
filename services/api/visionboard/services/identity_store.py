"""Identity persistence: user records, PKCE states and OAuth poll tokens.

Two backends share one interface. ``SqlIdentityStore`` is used whenever a
database is configured. ``FileIdentityStore`` keeps per-key JSON files for
local development; it serializes writes inside one process only and gives no
cross-key atomicity.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
import logging
import os
import re
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from sqlalchemy import delete, select

from visionboard.database import Database, upsert
from visionboard.models.oauth_state import OAuthPollTokenRow, PkceStateRow
from visionboard.models.user import User
from visionboard.services.crypto_service import CryptoService
from visionboard.services.token_service import ProviderTokens

logger = logging.getLogger(__name__)

PackagesMutation = Callable[[list[dict[str, Any]]], list[dict[str, Any]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class UserRecord:
    identity_id: str
    user_token: str
    team_id: str | None = None
    is_guest: bool = False
    guest_expires_at: datetime | None = None
    tokens: ProviderTokens | None = None
    habits: list[dict[str, Any]] = field(default_factory=list)
    packages: list[dict[str, Any]] = field(default_factory=list)

    def guest_expired(self, now: datetime | None = None) -> bool:
        if not self.is_guest or self.guest_expires_at is None:
            return False
        return (now or _utcnow()) > self.guest_expires_at


@dataclass(frozen=True)
class PendingAuthorization:
    state: str
    code_verifier: str
    created_at: datetime
    poll_token: str | None = None
    return_to: str | None = None
    origin: str | None = None


@dataclass(frozen=True)
class PollRecord:
    poll_token: str
    user_token: str | None
    identity_id: str | None
    updated_at: datetime | None = None

    @property
    def ready(self) -> bool:
        return bool(self.user_token)


class IdentityStore(ABC):
    """Storage contract for identities and in-flight OAuth attempts."""

    @abstractmethod
    async def get_user(self, identity_id: str) -> UserRecord | None: ...

    @abstractmethod
    async def find_user_by_token(self, user_token: str) -> UserRecord | None: ...

    @abstractmethod
    async def put_user(self, record: UserRecord) -> None: ...

    @abstractmethod
    async def save_tokens(self, identity_id: str, tokens: ProviderTokens) -> None: ...

    @abstractmethod
    async def connect_identity(
        self,
        identity_id: str,
        *,
        team_id: str | None,
        tokens: ProviderTokens,
        user_token: str,
    ) -> tuple[UserRecord, bool]:
        """Create the identity or update only its team and token fields.

        ``user_token`` is used for new identities only. Returns the stored
        record and whether it was created.
        """

    @abstractmethod
    async def save_habits(self, identity_id: str, habits: list[dict[str, Any]]) -> bool:
        """Replace the habit list; False when the identity is unknown."""

    @abstractmethod
    async def update_packages(self, identity_id: str, mutate: PackagesMutation) -> list[dict[str, Any]] | None:
        """Apply ``mutate`` to the package list under the record lock.

        Returns the stored list, or None when the identity is unknown.
        """

    @abstractmethod
    async def put_pkce_state(self, pending: PendingAuthorization) -> None: ...

    @abstractmethod
    async def pop_pkce_state(self, state: str) -> PendingAuthorization | None:
        """Return and delete the state in one step; a second pop returns None."""

    @abstractmethod
    async def delete_pkce_states_before(self, cutoff: datetime) -> int: ...

    @abstractmethod
    async def put_poll_record(
        self,
        poll_token: str,
        *,
        user_token: str | None = None,
        identity_id: str | None = None,
    ) -> None: ...

    @abstractmethod
    async def get_poll_record(self, poll_token: str) -> PollRecord | None: ...


# ---------------------------------------------------------------------------
# SQL backend
# ---------------------------------------------------------------------------


class SqlIdentityStore(IdentityStore):
    def __init__(self, database: Database, crypto: CryptoService) -> None:
        self._db = database
        self._crypto = crypto

    def _to_record(self, row: User) -> UserRecord:
        tokens = None
        if row.encrypted_access_token is not None:
            tokens = ProviderTokens(
                access_token=self._crypto.decrypt(row.encrypted_access_token),
                refresh_token=self._crypto.decrypt_optional(row.encrypted_refresh_token),
                expires_in=row.token_expires_in,
                obtained_at=_aware(row.token_obtained_at),
                token_type=row.token_type,
                scope=row.token_scope,
            )
        return UserRecord(
            identity_id=row.identity_id,
            user_token=row.user_token,
            team_id=row.team_id,
            is_guest=row.is_guest,
            guest_expires_at=_aware(row.guest_expires_at),
            tokens=tokens,
            habits=list(row.habits or []),
            packages=list(row.packages or []),
        )

    def _token_columns(self, tokens: ProviderTokens | None) -> dict[str, Any]:
        if tokens is None:
            tokens = ProviderTokens(access_token=None)
        return {
            "encrypted_access_token": self._crypto.encrypt_optional(tokens.access_token),
            "encrypted_refresh_token": self._crypto.encrypt_optional(tokens.refresh_token),
            "token_expires_in": tokens.expires_in,
            "token_obtained_at": tokens.obtained_at,
            "token_type": tokens.token_type,
            "token_scope": tokens.scope,
        }

    async def get_user(self, identity_id: str) -> UserRecord | None:
        async with self._db.session() as session:
            row = await session.get(User, identity_id)
            return self._to_record(row) if row else None

    async def find_user_by_token(self, user_token: str) -> UserRecord | None:
        async with self._db.session() as session:
            result = await session.execute(select(User).where(User.user_token == user_token))
            row = result.scalar_one_or_none()
            return self._to_record(row) if row else None

    async def put_user(self, record: UserRecord) -> None:
        values = {
            "identity_id": record.identity_id,
            "team_id": record.team_id,
            "user_token": record.user_token,
            "is_guest": record.is_guest,
            "guest_expires_at": record.guest_expires_at,
            "habits": record.habits,
            "packages": record.packages,
            "updated_at": _utcnow(),
            **self._token_columns(record.tokens),
        }
        async with self._db.session() as session:
            stmt = upsert(session, User).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[User.identity_id],
                set_={k: v for k, v in values.items() if k != "identity_id"},
            )
            await session.execute(stmt)

    async def save_tokens(self, identity_id: str, tokens: ProviderTokens) -> None:
        async with self._db.session() as session:
            row = await session.get(User, identity_id)
            if row is None:
                logger.warning("save_tokens: no user %s", identity_id)
                return
            for key, value in self._token_columns(tokens).items():
                setattr(row, key, value)

    async def connect_identity(
        self,
        identity_id: str,
        *,
        team_id: str | None,
        tokens: ProviderTokens,
        user_token: str,
    ) -> tuple[UserRecord, bool]:
        now = _utcnow()
        connected = {
            "team_id": team_id,
            "is_guest": False,
            "guest_expires_at": None,
            "updated_at": now,
            **self._token_columns(tokens),
        }
        async with self._db.session() as session:
            stmt = upsert(session, User).values(
                identity_id=identity_id, user_token=user_token, habits=[], packages=[], created_at=now, **connected
            )
            stmt = stmt.on_conflict_do_update(index_elements=[User.identity_id], set_=connected)
            await session.execute(stmt)
            row = await session.get(User, identity_id)
            return self._to_record(row), row.user_token == user_token

    async def _locked_row(self, session, identity_id: str) -> User | None:
        result = await session.execute(select(User).where(User.identity_id == identity_id).with_for_update())
        return result.scalar_one_or_none()

    async def save_habits(self, identity_id: str, habits: list[dict[str, Any]]) -> bool:
        async with self._db.session() as session:
            row = await self._locked_row(session, identity_id)
            if row is None:
                return False
            row.habits = list(habits)
            row.updated_at = _utcnow()
            return True

    async def update_packages(self, identity_id: str, mutate: PackagesMutation) -> list[dict[str, Any]] | None:
        async with self._db.session() as session:
            row = await self._locked_row(session, identity_id)
            if row is None:
                return None
            packages = mutate(list(row.packages or []))
            row.packages = packages
            row.updated_at = _utcnow()
            return packages

    async def put_pkce_state(self, pending: PendingAuthorization) -> None:
        async with self._db.session() as session:
            session.add(
                PkceStateRow(
                    state=pending.state,
                    code_verifier=pending.code_verifier,
                    poll_token=pending.poll_token,
                    return_to=pending.return_to,
                    origin=pending.origin,
                    created_at=pending.created_at,
                )
            )

    async def pop_pkce_state(self, state: str) -> PendingAuthorization | None:
        async with self._db.session() as session:
            result = await session.execute(
                select(PkceStateRow).where(PkceStateRow.state == state).with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                return None
            pending = PendingAuthorization(
                state=row.state,
                code_verifier=row.code_verifier,
                created_at=_aware(row.created_at),
                poll_token=row.poll_token,
                return_to=row.return_to,
                origin=row.origin,
            )
            await session.delete(row)
            return pending

    async def delete_pkce_states_before(self, cutoff: datetime) -> int:
        async with self._db.session() as session:
            result = await session.execute(delete(PkceStateRow).where(PkceStateRow.created_at < cutoff))
            return result.rowcount or 0

    async def put_poll_record(
        self,
        poll_token: str,
        *,
        user_token: str | None = None,
        identity_id: str | None = None,
    ) -> None:
        values = {
            "poll_token": poll_token,
            "user_token": user_token,
            "identity_id": identity_id,
            "updated_at": _utcnow(),
        }
        async with self._db.session() as session:
            stmt = upsert(session, OAuthPollTokenRow).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[OAuthPollTokenRow.poll_token],
                set_={k: v for k, v in values.items() if k != "poll_token"},
            )
            await session.execute(stmt)

    async def get_poll_record(self, poll_token: str) -> PollRecord | None:
        async with self._db.session() as session:
            row = await session.get(OAuthPollTokenRow, poll_token)
            if row is None:
                return None
            return PollRecord(
                poll_token=row.poll_token,
                user_token=row.user_token,
                identity_id=row.identity_id,
                updated_at=_aware(row.updated_at),
            )


# ---------------------------------------------------------------------------
# JSON file backend
# ---------------------------------------------------------------------------

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9_.-]")


def _dt_to_text(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _dt_from_text(value: str | None) -> datetime | None:
    return _aware(datetime.fromisoformat(value)) if value else None


class FileIdentityStore(IdentityStore):
    """Per-key JSON documents under ``data_dir``.

    ``users/<identity>.json`` holds one record each; PKCE states and poll
    tokens live in one JSON object per kind. Files are replaced atomically.
    """

    def __init__(self, data_dir: str | Path, crypto: CryptoService) -> None:
        self._root = Path(data_dir)
        self._users_dir = self._root / "users"
        self._crypto = crypto
        self._lock = asyncio.Lock()

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    @staticmethod
    def _read_json(path: Path, fallback: Any) -> Any:
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (FileNotFoundError, ValueError):
            return fallback

    @staticmethod
    def _write_json(path: Path, obj: Any) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(obj, fh, indent=2)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _user_path(self, identity_id: str) -> Path:
        return self._users_dir / f"{_UNSAFE_FILENAME.sub('_', identity_id)}.json"

    def _encode_user(self, record: UserRecord) -> dict[str, Any]:
        tokens = record.tokens
        return {
            "identityId": record.identity_id,
            "teamId": record.team_id,
            "userToken": record.user_token,
            "isGuest": record.is_guest,
            "guestExpiresAt": _dt_to_text(record.guest_expires_at),
            "canva": None
            if tokens is None
            else {
                "accessToken": self._crypto.encrypt_to_text(tokens.access_token),
                "refreshToken": self._crypto.encrypt_to_text(tokens.refresh_token),
                "expiresIn": tokens.expires_in,
                "obtainedAt": _dt_to_text(tokens.obtained_at),
                "tokenType": tokens.token_type,
                "scope": tokens.scope,
            },
            "habits": record.habits,
            "packages": record.packages,
        }

    def _decode_user(self, doc: dict[str, Any]) -> UserRecord:
        canva = doc.get("canva")
        tokens = None
        if canva:
            tokens = ProviderTokens(
                access_token=self._crypto.decrypt_from_text(canva.get("accessToken")),
                refresh_token=self._crypto.decrypt_from_text(canva.get("refreshToken")),
                expires_in=canva.get("expiresIn"),
                obtained_at=_dt_from_text(canva.get("obtainedAt")),
                token_type=canva.get("tokenType"),
                scope=canva.get("scope"),
            )
        return UserRecord(
            identity_id=doc["identityId"],
            user_token=doc["userToken"],
            team_id=doc.get("teamId"),
            is_guest=bool(doc.get("isGuest")),
            guest_expires_at=_dt_from_text(doc.get("guestExpiresAt")),
            tokens=tokens,
            habits=list(doc.get("habits") or []),
            packages=list(doc.get("packages") or []),
        )

    async def get_user(self, identity_id: str) -> UserRecord | None:
        doc = await self._run(self._read_json, self._user_path(identity_id), None)
        return self._decode_user(doc) if doc else None

    def _scan_for_token(self, user_token: str) -> dict[str, Any] | None:
        if not self._users_dir.exists():
            return None
        for path in self._users_dir.glob("*.json"):
            doc = self._read_json(path, None)
            if doc and doc.get("userToken") == user_token:
                return doc
        return None

    async def find_user_by_token(self, user_token: str) -> UserRecord | None:
        doc = await self._run(self._scan_for_token, user_token)
        return self._decode_user(doc) if doc else None

    async def put_user(self, record: UserRecord) -> None:
        async with self._lock:
            await self._run(self._write_json, self._user_path(record.identity_id), self._encode_user(record))

    async def save_tokens(self, identity_id: str, tokens: ProviderTokens) -> None:
        async with self._lock:
            path = self._user_path(identity_id)
            doc = await self._run(self._read_json, path, None)
            if not doc:
                logger.warning("save_tokens: no user %s", identity_id)
                return
            record = dataclasses.replace(self._decode_user(doc), tokens=tokens)
            await self._run(self._write_json, path, self._encode_user(record))

    async def connect_identity(
        self,
        identity_id: str,
        *,
        team_id: str | None,
        tokens: ProviderTokens,
        user_token: str,
    ) -> tuple[UserRecord, bool]:
        async with self._lock:
            path = self._user_path(identity_id)
            doc = await self._run(self._read_json, path, None)
            if doc:
                record = dataclasses.replace(
                    self._decode_user(doc), team_id=team_id, is_guest=False, guest_expires_at=None, tokens=tokens
                )
            else:
                record = UserRecord(identity_id=identity_id, user_token=user_token, team_id=team_id, tokens=tokens)
            await self._run(self._write_json, path, self._encode_user(record))
        return record, not doc

    async def _update_user(self, identity_id: str, change) -> UserRecord | None:
        async with self._lock:
            path = self._user_path(identity_id)
            doc = await self._run(self._read_json, path, None)
            if not doc:
                return None
            record = change(self._decode_user(doc))
            await self._run(self._write_json, path, self._encode_user(record))
            return record

    async def save_habits(self, identity_id: str, habits: list[dict[str, Any]]) -> bool:
        record = await self._update_user(identity_id, lambda r: dataclasses.replace(r, habits=list(habits)))
        return record is not None

    async def update_packages(self, identity_id: str, mutate: PackagesMutation) -> list[dict[str, Any]] | None:
        record = await self._update_user(identity_id, lambda r: dataclasses.replace(r, packages=mutate(list(r.packages))))
        return None if record is None else record.packages

    # --- PKCE states ---

    @property
    def _pkce_path(self) -> Path:
        return self._root / "pkce_states.json"

    async def put_pkce_state(self, pending: PendingAuthorization) -> None:
        async with self._lock:
            states = await self._run(self._read_json, self._pkce_path, {})
            states[pending.state] = {
                "codeVerifier": pending.code_verifier,
                "createdAt": _dt_to_text(pending.created_at),
                "pollToken": pending.poll_token,
                "returnTo": pending.return_to,
                "origin": pending.origin,
            }
            await self._run(self._write_json, self._pkce_path, states)

    async def pop_pkce_state(self, state: str) -> PendingAuthorization | None:
        async with self._lock:
            states = await self._run(self._read_json, self._pkce_path, {})
            doc = states.pop(state, None)
            if doc is None:
                return None
            await self._run(self._write_json, self._pkce_path, states)
        return PendingAuthorization(
            state=state,
            code_verifier=doc["codeVerifier"],
            created_at=_dt_from_text(doc.get("createdAt")) or _utcnow(),
            poll_token=doc.get("pollToken"),
            return_to=doc.get("returnTo"),
            origin=doc.get("origin"),
        )

    async def delete_pkce_states_before(self, cutoff: datetime) -> int:
        async with self._lock:
            states = await self._run(self._read_json, self._pkce_path, {})
            stale = [
                key
                for key, doc in states.items()
                if (_dt_from_text(doc.get("createdAt")) or cutoff) < cutoff
            ]
            for key in stale:
                del states[key]
            if stale:
                await self._run(self._write_json, self._pkce_path, states)
            return len(stale)

    # --- Poll tokens ---

    @property
    def _poll_path(self) -> Path:
        return self._root / "oauth_poll_tokens.json"

    async def put_poll_record(
        self,
        poll_token: str,
        *,
        user_token: str | None = None,
        identity_id: str | None = None,
    ) -> None:
        async with self._lock:
            records = await self._run(self._read_json, self._poll_path, {})
            records[poll_token] = {
                "userToken": user_token,
                "identityId": identity_id,
                "updatedAt": _dt_to_text(_utcnow()),
            }
            await self._run(self._write_json, self._poll_path, records)

    async def get_poll_record(self, poll_token: str) -> PollRecord | None:
        records = await self._run(self._read_json, self._poll_path, {})
        doc = records.get(poll_token)
        if doc is None:
            return None
        return PollRecord(
            poll_token=poll_token,
            user_token=doc.get("userToken"),
            identity_id=doc.get("identityId"),
            updated_at=_dt_from_text(doc.get("updatedAt")),
        )
