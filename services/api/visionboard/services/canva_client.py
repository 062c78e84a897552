"""Canva Connect REST API client."""

import base64
import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from visionboard.config import Settings
from visionboard.errors import UpstreamError

logger = logging.getLogger(__name__)

CANVA_AUTHORIZE_URL = "https://www.canva.com/api/oauth/authorize"
CANVA_TOKEN_URL = "https://api.canva.com/rest/v1/oauth/token"
CANVA_USERS_ME_URL = "https://api.canva.com/rest/v1/users/me"
CANVA_EXPORTS_URL = "https://api.canva.com/rest/v1/exports"


class CanvaAPIError(UpstreamError):
    """Non-2xx response from Canva."""

    code = "canva_api_error"

    def __init__(self, operation: str, upstream_status: int, body: Any = None) -> None:
        super().__init__(f"Canva {operation} failed: {upstream_status}")
        self.operation = operation
        self.upstream_status = upstream_status
        self.body = body


def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


class CanvaClient:
    """Thin async wrapper over the Canva endpoints the backend needs."""

    def __init__(self, settings: Settings, http: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._http = http or httpx.AsyncClient(timeout=httpx.Timeout(30.0))

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._http.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            # Connect errors and timeouts carry no HTTP status
            logger.error("Canva %s transport error: %s", operation, type(e).__name__)
            raise CanvaAPIError(operation, 0, str(e)) from e

    def _basic_auth_header(self) -> str:
        raw = f"{self._settings.canva_client_id}:{self._settings.canva_client_secret.get_secret_value()}"
        return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")

    def authorize_url(self, *, state: str, code_challenge: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self._settings.canva_client_id,
            "redirect_uri": self._settings.oauth_redirect_uri,
            "scope": self._settings.canva_scopes,
            "state": state,
            "code_challenge_method": "s256",
            "code_challenge": code_challenge,
        }
        return f"{CANVA_AUTHORIZE_URL}?{urlencode(params)}"

    async def _token_request(self, operation: str, form: dict[str, str]) -> dict[str, Any]:
        response = await self._send(
            operation,
            "POST",
            CANVA_TOKEN_URL,
            data=form,
            headers={"Authorization": self._basic_auth_header()},
        )
        body = _json_or_none(response)
        if not response.is_success:
            logger.error("Canva %s failed: status=%s", operation, response.status_code)
            raise CanvaAPIError(operation, response.status_code, body)
        return body or {}

    async def exchange_authorization_code(self, *, code: str, code_verifier: str) -> dict[str, Any]:
        """Trade an authorization code for access_token, refresh_token, expires_in, token_type."""
        return await self._token_request(
            "token exchange",
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._settings.oauth_redirect_uri,
                "code_verifier": code_verifier,
            },
        )

    async def refresh_access_token(self, *, refresh_token: str) -> dict[str, Any]:
        return await self._token_request(
            "token refresh",
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )

    async def get_users_me(self, access_token: str) -> dict[str, Any]:
        response = await self._send(
            "users/me",
            "GET",
            CANVA_USERS_ME_URL,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        body = _json_or_none(response)
        if not response.is_success:
            raise CanvaAPIError("users/me", response.status_code, body)
        return body or {}

    async def create_export_job(
        self,
        *,
        access_token: str,
        design_id: str,
        format: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Submit an export. Returns the job object; raises when no job id comes back."""
        response = await self._send(
            "create export",
            "POST",
            CANVA_EXPORTS_URL,
            json={"design_id": design_id, "format": format or {"type": "png"}},
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        body = _json_or_none(response)
        if not response.is_success:
            raise CanvaAPIError("create export", response.status_code, body)
        job = (body or {}).get("job") if isinstance(body, dict) else None
        if not isinstance(job, dict) or not job.get("id"):
            raise CanvaAPIError("create export", response.status_code, body)
        return job

    async def get_export_job(self, *, access_token: str, export_id: str) -> dict[str, Any]:
        response = await self._send(
            "get export",
            "GET",
            f"{CANVA_EXPORTS_URL}/{export_id}",
            headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        )
        body = _json_or_none(response)
        if not response.is_success:
            raise CanvaAPIError("get export", response.status_code, body)
        if isinstance(body, dict) and isinstance(body.get("job"), dict):
            return body["job"]
        return body or {}

    async def download(self, url: str) -> bytes:
        response = await self._send("download", "GET", url)
        if not response.is_success:
            raise CanvaAPIError("download", response.status_code)
        return response.content
