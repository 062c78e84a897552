"""Export jobs and the image artifacts cropped from them."""

import enum
from datetime import datetime

from sqlalchemy import DateTime, Enum, LargeBinary, String
from sqlalchemy.orm import Mapped, mapped_column

from visionboard.models.base import Base, JSONType, TimestampMixin


class ExportState(str, enum.Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in (ExportState.COMPLETED, ExportState.FAILED, ExportState.TIMED_OUT)


class ExportJob(Base, TimestampMixin):
    __tablename__ = "dv_export_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    identity_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    package_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    design_id: Mapped[str] = mapped_column(String(255), nullable=False)
    format: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    provider_job_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    state: Mapped[ExportState] = mapped_column(
        Enum(ExportState, name="export_state", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ExportState.SUBMITTED,
    )
    provider_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    urls: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    error: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ExportJob {self.id} state={self.state.value}>"


class TemplateImage(Base, TimestampMixin):
    __tablename__ = "dv_template_images"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content_type: Mapped[str] = mapped_column(String(64), nullable=False, default="image/png")
    bytes: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)

    def __repr__(self) -> str:
        return f"<TemplateImage {self.id}>"
