"""Habit, package and export schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class HabitsUpdate(BaseModel):
    habits: list[Any]


class ExportRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    package_id: str = Field(..., min_length=1, alias="packageId")
    format: dict[str, Any] | None = None


class ImportCurrentPageRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    design_id: str | None = Field(None, alias="designId")
    design_token: str | None = Field(None, alias="designToken")
    elements: list[Any] | None = None
