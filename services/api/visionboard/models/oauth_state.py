"""Ephemeral OAuth rows: PKCE states and poll tokens."""

from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from visionboard.models.base import Base, utcnow


class PkceStateRow(Base):
    __tablename__ = "dv_pkce_states"

    state: Mapped[str] = mapped_column(String(128), primary_key=True)
    code_verifier: Mapped[str] = mapped_column(String(128), nullable=False)
    poll_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    return_to: Mapped[str | None] = mapped_column(Text, nullable=True)
    origin: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<PkceStateRow {self.state[:8]}...>"


class OAuthPollTokenRow(Base):
    __tablename__ = "dv_oauth_poll_tokens"

    poll_token: Mapped[str] = mapped_column(String(128), primary_key=True)
    user_token: Mapped[str | None] = mapped_column(String(128), nullable=True)
    identity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<OAuthPollTokenRow {self.poll_token[:8]}...>"
