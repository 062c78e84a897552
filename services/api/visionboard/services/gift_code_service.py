"""Gift code redemption and provisioning."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from visionboard.database import upsert
from visionboard.errors import InvalidRequest
from visionboard.metrics import gift_redemptions_total
from visionboard.models.gift_code import GiftCode, GiftCodeRedemption
from visionboard.models.sync import UserSettings

logger = logging.getLogger(__name__)

SUBSCRIPTION_SOURCE = "gift_code"


@dataclass(frozen=True)
class RedemptionResult:
    ok: bool
    plan_id: str | None = None
    reason: str | None = None

    @classmethod
    def rejected(cls, reason: str) -> "RedemptionResult":
        return cls(ok=False, reason=reason)

    def to_dict(self) -> dict:
        if self.ok:
            return {"ok": True, "planId": self.plan_id}
        return {"ok": False, "error": self.reason}


def normalize_code(code: str | None) -> str:
    return code.strip() if isinstance(code, str) else ""


async def _reject(db: AsyncSession, code: str, reason: str) -> RedemptionResult:
    await db.rollback()
    gift_redemptions_total.labels(outcome=reason).inc()
    logger.info("Gift code %s rejected: %s", code, reason)
    return RedemptionResult.rejected(reason)


async def redeem(db: AsyncSession, code: str, identity_id: str) -> RedemptionResult:
    """Consume one use of ``code`` for ``identity_id``.

    Runs as one transaction holding the gift code row ``FOR UPDATE`` so
    concurrent redemptions of the same code serialize. Business rejections
    are returned, never raised, and leave no partial state behind.
    """
    code = normalize_code(code)
    if not code:
        gift_redemptions_total.labels(outcome="missing_code").inc()
        return RedemptionResult.rejected("missing_code")

    try:
        result = await db.execute(select(GiftCode).where(GiftCode.code == code).with_for_update())
        gift = result.scalar_one_or_none()
        if gift is None:
            return await _reject(db, code, "invalid_code")
        if not gift.active:
            return await _reject(db, code, "code_inactive")
        if gift.used_count >= gift.max_uses:
            return await _reject(db, code, "code_exhausted")

        existing = await db.execute(
            select(GiftCodeRedemption.id).where(
                GiftCodeRedemption.code == code,
                GiftCodeRedemption.identity_id == identity_id,
            )
        )
        if existing.first() is not None:
            return await _reject(db, code, "already_redeemed")

        now = datetime.now(timezone.utc)
        gift.used_count += 1
        db.add(GiftCodeRedemption(code=code, identity_id=identity_id, redeemed_at=now))
        await db.flush()

        stmt = upsert(db, UserSettings).values(
            identity_id=identity_id,
            subscription_plan_id=gift.plan_id,
            subscription_active=True,
            subscription_source=SUBSCRIPTION_SOURCE,
            subscription_updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[UserSettings.identity_id],
            set_={
                "subscription_plan_id": gift.plan_id,
                "subscription_active": True,
                "subscription_source": SUBSCRIPTION_SOURCE,
                "subscription_updated_at": now,
                "updated_at": now,
            },
        )
        await db.execute(stmt)
        plan_id = gift.plan_id
        await db.commit()
    except IntegrityError:
        # Ledger unique constraint lost a race with a concurrent redemption
        return await _reject(db, code, "already_redeemed")
    except Exception:
        await db.rollback()
        raise

    gift_redemptions_total.labels(outcome="redeemed").inc()
    logger.info("Gift code %s redeemed by %s (plan=%s)", code, identity_id, plan_id)
    return RedemptionResult(ok=True, plan_id=plan_id)


async def create_gift_code(
    db: AsyncSession,
    *,
    code: str,
    plan_id: str,
    duration_days: int = 30,
    max_uses: int = 1,
    active: bool = True,
) -> GiftCode:
    gift = GiftCode(
        code=code,
        plan_id=plan_id,
        duration_days=duration_days,
        max_uses=max_uses,
        used_count=0,
        active=active,
    )
    db.add(gift)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise InvalidRequest("code_exists", code=code) from e
    logger.info("Gift code %s created (plan=%s, max_uses=%d)", code, plan_id, max_uses)
    return gift


async def list_gift_codes(db: AsyncSession) -> list[GiftCode]:
    result = await db.execute(select(GiftCode).order_by(GiftCode.created_at.desc()))
    return list(result.scalars().all())
