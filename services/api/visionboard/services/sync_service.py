"""Sync protocol: bootstrap snapshot, idempotent push and retention pruning.

Every mutation keys on a natural tuple with overwrite semantics, so replaying
a push leaves the store unchanged. Callers pass the request session; each
public operation commits once at the end and rolls back on any error.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from visionboard.database import upsert
from visionboard.metrics import sync_entries_skipped_total, sync_pushes_total, sync_rows_pruned_total
from visionboard.models.sync import Board, ChecklistEvent, HabitCompletion, UserSettings
from visionboard.schemas.sync import (
    BoardEntry,
    ChecklistEventEntry,
    HabitCompletionEntry,
    SettingsUpdate,
    SyncPushRequest,
)
from visionboard.services.oauth_service import normalize_gender

logger = logging.getLogger(__name__)

_COALESCED_FIELDS = ("display_name", "weight_kg", "height_cm", "date_of_birth")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def retention_cutoff(retain_days: int, today: date | None = None) -> date:
    """Oldest logical date still retained."""
    today = today or _utcnow().date()
    return today - timedelta(days=retain_days)


@dataclass(frozen=True)
class PushResult:
    applied: int
    skipped: int


async def prune_logs(db: AsyncSession, cutoff: date, identity_id: str | None = None) -> int:
    """Delete dated log rows older than ``cutoff``; all identities when ``identity_id`` is None."""
    removed = 0
    for model in (HabitCompletion, ChecklistEvent):
        stmt = delete(model).where(model.logical_date < cutoff)
        if identity_id is not None:
            stmt = stmt.where(model.identity_id == identity_id)
        result = await db.execute(stmt)
        removed += result.rowcount or 0
    if removed:
        sync_rows_pruned_total.inc(removed)
        logger.info("Pruned %d dated log rows older than %s (identity=%s)", removed, cutoff, identity_id)
    return removed


async def _upsert_settings(db: AsyncSession, identity_id: str, update: SettingsUpdate) -> None:
    now = _utcnow()
    values = {
        "identity_id": identity_id,
        "home_timezone": update.home_timezone,
        "gender": normalize_gender(update.gender),
        "display_name": update.display_name,
        "weight_kg": update.weight_kg,
        "height_cm": update.height_cm,
        "date_of_birth": update.date_of_birth,
        "updated_at": now,
    }
    stmt = upsert(db, UserSettings).values(**values)
    set_ = {
        "home_timezone": stmt.excluded.home_timezone,
        "gender": stmt.excluded.gender,
        "updated_at": now,
    }
    for name in _COALESCED_FIELDS:
        set_[name] = func.coalesce(stmt.excluded[name], getattr(UserSettings, name))
    await db.execute(stmt.on_conflict_do_update(index_elements=[UserSettings.identity_id], set_=set_))


async def _upsert_board(db: AsyncSession, identity_id: str, entry: BoardEntry) -> None:
    now = _utcnow()
    stmt = upsert(db, Board).values(
        identity_id=identity_id,
        board_id=entry.board_id,
        board_json=entry.board_json,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Board.identity_id, Board.board_id],
        set_={"board_json": stmt.excluded.board_json, "updated_at": now},
    )
    await db.execute(stmt)


async def _apply_entry(db: AsyncSession, model, key: dict[str, Any], entry) -> None:
    if entry.deleted:
        await db.execute(delete(model).where(*(getattr(model, k) == v for k, v in key.items())))
        return
    now = _utcnow()
    stmt = upsert(db, model).values(**key, rating=entry.rating, note=entry.note, updated_at=now)
    stmt = stmt.on_conflict_do_update(
        index_elements=[getattr(model, k) for k in key],
        set_={"rating": stmt.excluded.rating, "note": stmt.excluded.note, "updated_at": now},
    )
    await db.execute(stmt)


def _validated(entries: list[Any] | None, schema, collection: str) -> tuple[list, int]:
    valid = []
    skipped = 0
    for raw in entries or []:
        try:
            valid.append(schema.model_validate(raw))
        except ValidationError:
            skipped += 1
    if skipped:
        sync_entries_skipped_total.labels(collection=collection).inc(skipped)
    return valid, skipped


async def push(db: AsyncSession, identity_id: str, body: SyncPushRequest, retain_days: int) -> PushResult:
    """Apply one push batch atomically. Invalid entries are skipped, never fatal."""
    applied = 0
    skipped = 0
    try:
        if body.user_settings is not None:
            await _upsert_settings(db, identity_id, SettingsUpdate.model_validate(body.user_settings))

        boards, n = _validated(body.boards, BoardEntry, "boards")
        skipped += n
        for board in boards:
            await _upsert_board(db, identity_id, board)
            applied += 1

        habits, n = _validated(body.habit_completions, HabitCompletionEntry, "habit_completions")
        skipped += n
        for h in habits:
            key = {
                "identity_id": identity_id,
                "board_id": h.board_id,
                "component_id": h.component_id,
                "habit_id": h.habit_id,
                "logical_date": h.logical_date,
            }
            await _apply_entry(db, HabitCompletion, key, h)
            applied += 1

        events, n = _validated(body.checklist_events, ChecklistEventEntry, "checklist_events")
        skipped += n
        for e in events:
            key = {
                "identity_id": identity_id,
                "board_id": e.board_id,
                "component_id": e.component_id,
                "task_id": e.task_id,
                "item_id": e.item_id,
                "logical_date": e.logical_date,
            }
            await _apply_entry(db, ChecklistEvent, key, e)
            applied += 1

        await prune_logs(db, retention_cutoff(retain_days), identity_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    sync_pushes_total.inc()
    logger.info("Sync push for %s: applied=%d skipped=%d", identity_id, applied, skipped)
    return PushResult(applied=applied, skipped=skipped)


async def put_user_settings(db: AsyncSession, identity_id: str, update: SettingsUpdate) -> dict[str, Any]:
    try:
        await _upsert_settings(db, identity_id, update)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return {
        "home_timezone": update.home_timezone,
        "gender": normalize_gender(update.gender),
        "display_name": update.display_name,
        "weight_kg": update.weight_kg,
        "height_cm": update.height_cm,
        "date_of_birth": _iso(update.date_of_birth),
    }


async def seed_guest_settings(db: AsyncSession, identity_id: str, home_timezone: str | None, gender: str) -> None:
    await _upsert_settings(db, identity_id, SettingsUpdate(home_timezone=home_timezone, gender=gender))
    await db.commit()


def _completion_dict(row: HabitCompletion) -> dict[str, Any]:
    return {
        "boardId": row.board_id,
        "componentId": row.component_id,
        "habitId": row.habit_id,
        "logicalDate": row.logical_date.isoformat(),
        "rating": row.rating,
        "note": row.note,
        "updatedAt": _iso(row.updated_at),
    }


def _checklist_dict(row: ChecklistEvent) -> dict[str, Any]:
    return {
        "boardId": row.board_id,
        "componentId": row.component_id,
        "taskId": row.task_id,
        "itemId": row.item_id,
        "logicalDate": row.logical_date.isoformat(),
        "rating": row.rating,
        "note": row.note,
        "updatedAt": _iso(row.updated_at),
    }


async def bootstrap(db: AsyncSession, identity_id: str, retain_days: int) -> dict[str, Any]:
    """Prune, then return settings, boards and retained events newest-first."""
    cutoff = retention_cutoff(retain_days)
    try:
        await prune_logs(db, cutoff, identity_id)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    settings = await db.get(UserSettings, identity_id)
    boards = await db.execute(
        select(Board).where(Board.identity_id == identity_id).order_by(Board.updated_at.desc())
    )
    completions = await db.execute(
        select(HabitCompletion)
        .where(HabitCompletion.identity_id == identity_id, HabitCompletion.logical_date >= cutoff)
        .order_by(HabitCompletion.logical_date.desc(), HabitCompletion.updated_at.desc())
    )
    checklist = await db.execute(
        select(ChecklistEvent)
        .where(ChecklistEvent.identity_id == identity_id, ChecklistEvent.logical_date >= cutoff)
        .order_by(ChecklistEvent.logical_date.desc(), ChecklistEvent.updated_at.desc())
    )

    return {
        "ok": True,
        "home_timezone": settings.home_timezone if settings else None,
        "gender": settings.gender if settings else "prefer_not_to_say",
        "display_name": settings.display_name if settings else None,
        "weight_kg": settings.weight_kg if settings else None,
        "height_cm": settings.height_cm if settings else None,
        "date_of_birth": _iso(settings.date_of_birth) if settings else None,
        "subscription_plan_id": settings.subscription_plan_id if settings else None,
        "subscription_active": bool(settings.subscription_active) if settings else False,
        "boards": [
            {"boardId": b.board_id, "boardJson": b.board_json, "updatedAt": _iso(b.updated_at)}
            for b in boards.scalars().all()
        ],
        "habit_completions": [_completion_dict(r) for r in completions.scalars().all()],
        "checklist_events": [_checklist_dict(r) for r in checklist.scalars().all()],
        "retain_days": retain_days,
    }
