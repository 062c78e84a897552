"""Gift code schemas."""

from pydantic import BaseModel, Field


class RedeemRequest(BaseModel):
    code: str | None = None


class GiftCodeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    plan_id: str = Field(..., min_length=1, max_length=64)
    duration_days: int = Field(30, ge=1)
    max_uses: int = Field(1, ge=1)
    active: bool = True


class GiftCodeResponse(BaseModel):
    code: str
    plan_id: str
    duration_days: int
    max_uses: int
    used_count: int
    active: bool
    created_at: str | None = None

    model_config = {"from_attributes": True}
