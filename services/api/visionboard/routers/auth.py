"""Authentication routes: Canva OAuth PKCE flow and guest sessions."""

import html
import json
import logging
from urllib.parse import urlencode, urlsplit

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse

from visionboard.dependencies import get_identity_store, get_oauth_connector
from visionboard.errors import InvalidState, OAuthError
from visionboard.schemas.auth import (
    CanvaAuthStartRequest,
    CanvaAuthStartResponse,
    GuestAuthRequest,
    GuestAuthResponse,
    PollResultResponse,
)
from visionboard.services.identity_store import IdentityStore
from visionboard.services.oauth_service import CallbackOutcome, OAuthConnector
from visionboard.services.sync_service import seed_guest_settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def with_query(url: str, params: dict[str, str]) -> str:
    sep = "&" if urlsplit(url).query else "?"
    return f"{url}{sep}{urlencode(params)}"


def _page(title: str, body: str, script: str = "", status_code: int = 200) -> HTMLResponse:
    content = (
        "<!doctype html><html><head><meta charset=\"utf-8\">"
        f"<title>{html.escape(title)}</title></head>"
        f"<body><p>{html.escape(body)}</p>{script}</body></html>"
    )
    return HTMLResponse(content=content, status_code=status_code)


def _post_message_script(message: dict, target_origin: str) -> str:
    # json.dumps output is escaped for embedding inside <script>
    payload = json.dumps(message).replace("<", "\\u003c")
    origin = json.dumps(target_origin).replace("<", "\\u003c")
    return (
        "<script>"
        f"if (window.opener) {{ window.opener.postMessage({payload}, {origin}); }}"
        "window.close();"
        "</script>"
    )


def render_success(outcome: CallbackOutcome):
    if outcome.return_to:
        return RedirectResponse(
            with_query(outcome.return_to, {"userToken": outcome.user_token, "identityId": outcome.identity_id}),
            status_code=302,
        )
    if outcome.poll_token:
        return _page("Connected", "Canva connected. You can close this window.")
    script = _post_message_script(
        {"type": "oauth_success", "userToken": outcome.user_token, "identityId": outcome.identity_id},
        outcome.origin or "*",
    )
    return _page("Connected", "Canva connected. You can close this window.", script)


def render_failure(code: str, status_code: int = 400) -> HTMLResponse:
    script = _post_message_script({"type": "oauth_error", "error": code}, "*")
    return _page("Connection failed", f"Canva connection failed: {code}", script, status_code)


@router.get("/canva/start")
async def canva_auth_start_redirect(
    return_to: str | None = None,
    origin: str | None = None,
    poll: bool = False,
    connector: OAuthConnector = Depends(get_oauth_connector),
):
    """Begin the OAuth flow by redirecting the browser to Canva."""
    start = await connector.build_authorization_url(return_to=return_to, origin=origin, wants_poll=poll)
    return RedirectResponse(start.auth_url, status_code=302)


@router.post("/canva/start", response_model=CanvaAuthStartResponse)
async def canva_auth_start(
    body: CanvaAuthStartRequest,
    connector: OAuthConnector = Depends(get_oauth_connector),
):
    """Begin the OAuth flow; the client opens ``auth_url`` itself."""
    start = await connector.build_authorization_url(
        return_to=body.return_to, origin=body.origin, wants_poll=body.poll
    )
    return CanvaAuthStartResponse(auth_url=start.auth_url, state=start.state, poll_token=start.poll_token)


@router.get("/canva/callback")
async def canva_auth_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    connector: OAuthConnector = Depends(get_oauth_connector),
    store: IdentityStore = Depends(get_identity_store),
):
    """Canva redirects here after consent."""
    if error or not code:
        if state:
            await store.pop_pkce_state(state)
        return render_failure(error or "missing_code")
    if not state:
        return render_failure(InvalidState.code)

    try:
        outcome = await connector.handle_callback(code=code, state=state)
    except OAuthError as e:
        logger.info("Canva callback failed: %s", e.code)
        return render_failure(e.code, e.status_code)
    return render_success(outcome)


@router.get("/canva/poll/{poll_token}", response_model=PollResultResponse)
async def canva_auth_poll(
    poll_token: str,
    connector: OAuthConnector = Depends(get_oauth_connector),
):
    """Poll-flow result; ``ready`` flips once the callback has completed."""
    record = await connector.get_poll_result(poll_token)
    return PollResultResponse(ready=record.ready, user_token=record.user_token, identity_id=record.identity_id)


@router.post("/guest", response_model=GuestAuthResponse)
async def guest_auth(
    request: Request,
    body: GuestAuthRequest | None = None,
    connector: OAuthConnector = Depends(get_oauth_connector),
):
    """Issue a guest session that expires after a fixed number of days."""
    body = body or GuestAuthRequest()
    session = await connector.create_guest_session(home_timezone=body.home_timezone, gender=body.gender)

    database = request.app.state.database
    if database is not None:
        async with database.session() as db:
            await seed_guest_settings(db, session.identity_id, session.home_timezone, session.gender)

    return GuestAuthResponse(
        user_token=session.user_token,
        identity_id=session.identity_id,
        expires_at=session.expires_at.isoformat(),
        home_timezone=session.home_timezone,
        gender=session.gender,
    )
