"""Synced user data: settings, boards and dated event logs."""

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, Float, PrimaryKeyConstraint, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from visionboard.models.base import Base, JSONType, TimestampMixin, utcnow


class UserSettings(Base, TimestampMixin):
    __tablename__ = "dv_user_settings"

    identity_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    home_timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    gender: Mapped[str] = mapped_column(String(32), nullable=False, default="prefer_not_to_say")
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    weight_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    height_cm: Mapped[float | None] = mapped_column(Float, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Written by gift code redemption
    subscription_plan_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    subscription_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    subscription_source: Mapped[str | None] = mapped_column(String(32), nullable=True)
    subscription_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<UserSettings {self.identity_id}>"


class Board(Base):
    __tablename__ = "dv_boards"
    __table_args__ = (PrimaryKeyConstraint("identity_id", "board_id", name="pk_dv_boards"),)

    identity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    board_id: Mapped[str] = mapped_column(String(255), nullable=False)
    board_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<Board {self.board_id} identity={self.identity_id}>"


class HabitCompletion(Base):
    __tablename__ = "dv_habit_completions"
    __table_args__ = (
        PrimaryKeyConstraint(
            "identity_id",
            "board_id",
            "component_id",
            "habit_id",
            "logical_date",
            name="pk_dv_habit_completions",
        ),
    )

    identity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    board_id: Mapped[str] = mapped_column(String(255), nullable=False)
    component_id: Mapped[str] = mapped_column(String(255), nullable=False)
    habit_id: Mapped[str] = mapped_column(String(255), nullable=False)
    logical_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class ChecklistEvent(Base):
    __tablename__ = "dv_checklist_events"
    __table_args__ = (
        PrimaryKeyConstraint(
            "identity_id",
            "board_id",
            "component_id",
            "task_id",
            "item_id",
            "logical_date",
            name="pk_dv_checklist_events",
        ),
    )

    identity_id: Mapped[str] = mapped_column(String(255), nullable=False)
    board_id: Mapped[str] = mapped_column(String(255), nullable=False)
    component_id: Mapped[str] = mapped_column(String(255), nullable=False)
    task_id: Mapped[str] = mapped_column(String(255), nullable=False)
    item_id: Mapped[str] = mapped_column(String(255), nullable=False)
    logical_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    rating: Mapped[float | None] = mapped_column(Float, nullable=True)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
