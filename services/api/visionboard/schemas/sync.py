"""Sync push/pull schemas."""

import re
from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator

_LOGICAL_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_logical_date(value: Any) -> date:
    """Strict ``YYYY-MM-DD`` that is also a real calendar date."""
    if not isinstance(value, str) or not _LOGICAL_DATE.match(value):
        raise ValueError("logical date must be YYYY-MM-DD")
    return date.fromisoformat(value)


def _number_or_none(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


class _Entry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    board_id: StrictStr = Field(alias="boardId", min_length=1)
    component_id: StrictStr = Field(alias="componentId", min_length=1)
    logical_date: date = Field(alias="logicalDate")
    rating: float | None = None
    note: str | None = None
    deleted: bool = False

    @field_validator("logical_date", mode="before")
    @classmethod
    def _strict_date(cls, v: Any) -> date:
        return parse_logical_date(v)

    @field_validator("rating", mode="before")
    @classmethod
    def _rating(cls, v: Any) -> float | None:
        return _number_or_none(v)

    @field_validator("note", mode="before")
    @classmethod
    def _note(cls, v: Any) -> str | None:
        return v if isinstance(v, str) else None

    @field_validator("deleted", mode="before")
    @classmethod
    def _deleted(cls, v: Any) -> bool:
        return bool(v)


class HabitCompletionEntry(_Entry):
    habit_id: StrictStr = Field(alias="habitId", min_length=1)


class ChecklistEventEntry(_Entry):
    task_id: StrictStr = Field(alias="taskId", min_length=1)
    item_id: StrictStr = Field(alias="itemId", min_length=1)


class BoardEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    board_id: StrictStr = Field(alias="boardId", min_length=1)
    board_json: dict[str, Any] = Field(default_factory=dict, alias="boardJson")

    @field_validator("board_json", mode="before")
    @classmethod
    def _board_json(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}


class SettingsUpdate(BaseModel):
    """Settings fields accepted from push (camelCase) and PUT (snake_case).

    ``home_timezone`` and ``gender`` are written wholesale; the profile fields
    only overwrite when supplied.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    home_timezone: str | None = Field(None, alias="homeTimezone")
    gender: str | None = None
    display_name: str | None = Field(None, alias="displayName")
    weight_kg: float | None = Field(None, alias="weightKg")
    height_cm: float | None = Field(None, alias="heightCm")
    date_of_birth: date | None = Field(None, alias="dateOfBirth")

    @field_validator("home_timezone", "gender", mode="before")
    @classmethod
    def _str_or_none(cls, v: Any) -> str | None:
        return v if isinstance(v, str) else None

    @field_validator("display_name", mode="before")
    @classmethod
    def _display_name(cls, v: Any) -> str | None:
        return (v.strip() or None) if isinstance(v, str) else None

    @field_validator("weight_kg", "height_cm", mode="before")
    @classmethod
    def _measure(cls, v: Any) -> float | None:
        if isinstance(v, str):
            try:
                return float(v)
            except ValueError:
                return None
        return _number_or_none(v)

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def _dob(cls, v: Any) -> date | None:
        try:
            return parse_logical_date(v)
        except ValueError:
            return None


class SyncPushRequest(BaseModel):
    """Top-level push body; entries are validated one by one later."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    boards: list[Any] | None = None
    user_settings: dict[str, Any] | None = Field(None, alias="userSettings")
    habit_completions: list[Any] | None = Field(None, alias="habitCompletions")
    checklist_events: list[Any] | None = Field(None, alias="checklistEvents")

    @field_validator("boards", "habit_completions", "checklist_events", mode="before")
    @classmethod
    def _list_or_none(cls, v: Any) -> list[Any] | None:
        return v if isinstance(v, list) else None

    @field_validator("user_settings", mode="before")
    @classmethod
    def _dict_or_none(cls, v: Any) -> dict[str, Any] | None:
        return v if isinstance(v, dict) else None


class SyncPushResponse(BaseModel):
    ok: bool = True
    applied: int
    skipped: int
