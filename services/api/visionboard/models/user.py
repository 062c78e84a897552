"""User record: one row per Canva or guest identity."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, LargeBinary, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from visionboard.models.base import Base, JSONType, TimestampMixin


class User(Base, TimestampMixin):
    __tablename__ = "dv_users"

    identity_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    team_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    user_token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    is_guest: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    guest_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Canva tokens stored as encrypted bytes (libsodium crypto_secretbox)
    encrypted_access_token: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    encrypted_refresh_token: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    token_expires_in: Mapped[int | None] = mapped_column(Integer, nullable=True)
    token_obtained_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    token_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    token_scope: Mapped[str | None] = mapped_column(Text, nullable=True)

    habits: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    packages: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.identity_id} guest={self.is_guest}>"
