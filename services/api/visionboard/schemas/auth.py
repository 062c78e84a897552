"""Auth request/response schemas."""

from pydantic import BaseModel, ConfigDict, Field


class CanvaAuthStartRequest(BaseModel):
    return_to: str | None = None
    origin: str | None = None
    poll: bool = False


class CanvaAuthStartResponse(BaseModel):
    ok: bool = True
    auth_url: str
    state: str
    poll_token: str | None = None


class PollResultResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    ready: bool
    user_token: str | None = Field(None, alias="userToken")
    identity_id: str | None = Field(None, alias="identityId")


class GuestAuthRequest(BaseModel):
    home_timezone: str | None = None
    gender: str | None = None


class GuestAuthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool = True
    user_token: str = Field(alias="userToken")
    identity_id: str = Field(alias="identityId")
    expires_at: str = Field(alias="expiresAt")
    home_timezone: str | None = None
    gender: str
