"""Per-user affirmations shown alongside vision boards."""

from sqlalchemy import Boolean, Index, PrimaryKeyConstraint, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from visionboard.models.base import Base, TimestampMixin


class Affirmation(Base, TimestampMixin):
    __tablename__ = "dv_affirmations"
    __table_args__ = (
        PrimaryKeyConstraint("identity_id", "affirmation_id", name="pk_dv_affirmations"),
        Index("ix_dv_affirmations_identity_category", "identity_id", "category"),
    )

    identity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    affirmation_id: Mapped[str] = mapped_column(String(255), nullable=False)
    # NULL category means the affirmation shows under every category filter
    category: Mapped[str | None] = mapped_column(String(64), nullable=True)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_custom: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Affirmation {self.affirmation_id} identity={self.identity_id}>"
