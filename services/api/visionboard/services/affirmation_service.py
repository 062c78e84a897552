"""Per-user affirmations: list, upsert, delete and pin."""

import logging
import secrets
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from visionboard.database import upsert
from visionboard.errors import InvalidRequest, NotFound
from visionboard.models.affirmation import Affirmation
from visionboard.schemas.affirmation import AffirmationWrite

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _affirmation_dict(row: Affirmation) -> dict[str, Any]:
    return {
        "id": row.affirmation_id,
        "category": row.category,
        "text": row.text,
        "isPinned": bool(row.is_pinned),
        "isCustom": bool(row.is_custom),
        "createdAt": _iso(row.created_at),
        "updatedAt": _iso(row.updated_at),
    }


async def list_affirmations(db: AsyncSession, identity_id: str, category: str | None = None) -> list[dict[str, Any]]:
    """Pinned first, then newest. A category filter also matches uncategorized rows."""
    stmt = select(Affirmation).where(Affirmation.identity_id == identity_id)
    if category:
        stmt = stmt.where(or_(Affirmation.category == category, Affirmation.category.is_(None)))
    stmt = stmt.order_by(Affirmation.is_pinned.desc(), Affirmation.created_at.desc())
    result = await db.execute(stmt)
    return [_affirmation_dict(row) for row in result.scalars()]


async def upsert_affirmation(db: AsyncSession, identity_id: str, affirmation: AffirmationWrite) -> str:
    """Create or overwrite by id; returns the id, generated when the client sent none."""
    if not affirmation.text:
        raise InvalidRequest("text_required")
    affirmation_id = affirmation.id or secrets.token_hex(12)
    now = _utcnow()
    values = {
        "category": affirmation.category,
        "text": affirmation.text,
        "is_pinned": affirmation.is_pinned,
        "is_custom": affirmation.is_custom,
    }
    stmt = upsert(db, Affirmation).values(identity_id=identity_id, affirmation_id=affirmation_id, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Affirmation.identity_id, Affirmation.affirmation_id],
        set_={**values, "updated_at": now},
    )
    try:
        await db.execute(stmt)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("Affirmation %s saved for %s", affirmation_id, identity_id)
    return affirmation_id


async def delete_affirmation(db: AsyncSession, identity_id: str, affirmation_id: str) -> None:
    result = await db.execute(
        delete(Affirmation).where(
            Affirmation.identity_id == identity_id,
            Affirmation.affirmation_id == affirmation_id,
        )
    )
    if result.rowcount == 0:
        await db.rollback()
        raise NotFound("affirmation_not_found")
    await db.commit()


async def set_pinned(db: AsyncSession, identity_id: str, affirmation_id: str, is_pinned: bool) -> None:
    result = await db.execute(
        update(Affirmation)
        .where(
            Affirmation.identity_id == identity_id,
            Affirmation.affirmation_id == affirmation_id,
        )
        .values(is_pinned=is_pinned, updated_at=_utcnow())
    )
    if result.rowcount == 0:
        await db.rollback()
        raise NotFound("affirmation_not_found")
    await db.commit()
