"""Affirmation request schemas.

Clients send either snake_case or camelCase flags.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator


def _trimmed(value: Any) -> str | None:
    return (value.strip() or None) if isinstance(value, str) else None


def _flag(data: dict[str, Any], snake: str, camel: str, default: bool) -> bool:
    value = data.get(snake)
    if value is None:
        value = data.get(camel)
    return default if value is None else bool(value)


class AffirmationWrite(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    category: str | None = None
    text: str = ""
    is_pinned: bool = False
    is_custom: bool = True

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> dict[str, Any]:
        data = data if isinstance(data, dict) else {}
        text = data.get("text")
        return {
            "id": data.get("id") if isinstance(data.get("id"), str) else None,
            "category": _trimmed(data.get("category")),
            "text": text.strip() if isinstance(text, str) else "",
            "is_pinned": _flag(data, "is_pinned", "isPinned", False),
            "is_custom": _flag(data, "is_custom", "isCustom", True),
        }


class PinRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    is_pinned: bool = True

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> dict[str, Any]:
        data = data if isinstance(data, dict) else {}
        return {"is_pinned": _flag(data, "is_pinned", "isPinned", True)}
