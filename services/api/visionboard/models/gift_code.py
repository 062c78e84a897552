"""Gift codes and their append-only redemption ledger."""

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from visionboard.models.base import Base, TimestampMixin, utcnow


class GiftCode(Base, TimestampMixin):
    __tablename__ = "dv_gift_codes"
    __table_args__ = (
        CheckConstraint("used_count <= max_uses", name="ck_gift_code_usage"),
    )

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    plan_id: Mapped[str] = mapped_column(String(64), nullable=False)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    max_uses: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<GiftCode {self.code} {self.used_count}/{self.max_uses}>"


class GiftCodeRedemption(Base):
    __tablename__ = "dv_gift_code_redemptions"
    __table_args__ = (
        UniqueConstraint("code", "identity_id", name="uq_gift_code_identity"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    code: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("dv_gift_codes.code", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    identity_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    redeemed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<GiftCodeRedemption {self.code} by {self.identity_id}>"
