"""Unit tests for the OAuth connector (PKCE, callback, guest sessions)."""

import base64
import hashlib
from datetime import datetime, timedelta, timezone

import httpx
import pytest
import pytest_asyncio
import respx

from visionboard.errors import IdentityResolutionFailed, InvalidPollToken, InvalidState, TokenExchangeFailed
from visionboard.services.canva_client import CANVA_TOKEN_URL, CANVA_USERS_ME_URL, CanvaAPIError, CanvaClient
from visionboard.services.identity_store import FileIdentityStore
from visionboard.services.oauth_service import (
    OAuthConnector,
    normalize_gender,
    pkce_challenge,
    safe_origin,
    safe_return_to,
)
from conftest import CANVA_TEAM_ID, CANVA_USER_ID


class Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime(2026, 4, 2, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(tmp_path, crypto):
    return FileIdentityStore(tmp_path / "data", crypto)


@pytest.fixture
def connector(settings, store, fake_canva, clock):
    return OAuthConnector(settings, store, fake_canva, clock=clock)


class TestHelpers:
    def test_pkce_challenge_matches_rfc7636_example(self):
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
        assert pkce_challenge(verifier) == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_pkce_challenge_has_no_padding(self):
        challenge = pkce_challenge("x" * 64)
        assert "=" not in challenge
        expected = base64.urlsafe_b64encode(hashlib.sha256(b"x" * 64).digest()).rstrip(b"=").decode()
        assert challenge == expected

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("female", "female"),
            (" non_binary ", "non_binary"),
            ("robot", "prefer_not_to_say"),
            (None, "prefer_not_to_say"),
            (3, "prefer_not_to_say"),
        ],
    )
    def test_normalize_gender(self, value, expected):
        assert normalize_gender(value) == expected

    def test_return_to_accepts_deep_links_and_own_host(self):
        assert safe_return_to("visionboard://oauth", "http://testserver") == "visionboard://oauth"
        assert safe_return_to("http://testserver/done", "http://testserver") == "http://testserver/done"

    def test_return_to_rejects_foreign_hosts_and_script_schemes(self):
        assert safe_return_to("https://evil.example.com/", "http://testserver") is None
        assert safe_return_to("javascript:alert(1)", "http://testserver") is None
        assert safe_return_to("/relative", "http://testserver") is None
        assert safe_return_to(None, "http://testserver") is None

    def test_safe_origin(self):
        assert safe_origin("https://app.example.com/some/path") == "https://app.example.com"
        assert safe_origin("file:///etc/passwd") is None
        assert safe_origin("") is None


class TestAuthorizationStart:
    @pytest.mark.asyncio
    async def test_state_is_stored_with_verifier(self, connector, store, fake_canva):
        start = await connector.build_authorization_url(return_to="visionboard://cb", origin="https://a.example")

        kwargs = fake_canva.authorize_url.call_args.kwargs
        assert kwargs["state"] == start.state
        assert start.poll_token is None

        pending = await store.pop_pkce_state(start.state)
        assert kwargs["code_challenge"] == pkce_challenge(pending.code_verifier)
        assert pending.return_to == "visionboard://cb"
        assert pending.origin == "https://a.example"

    @pytest.mark.asyncio
    async def test_poll_flow_creates_pending_record(self, connector, store):
        start = await connector.build_authorization_url(wants_poll=True)

        record = await store.get_poll_record(start.poll_token)
        assert record is not None
        assert record.ready is False

    @pytest.mark.asyncio
    async def test_states_are_unique(self, connector):
        first = await connector.build_authorization_url()
        second = await connector.build_authorization_url()
        assert first.state != second.state


class TestHandleCallback:
    @pytest.mark.asyncio
    async def test_success_creates_user_with_tokens(self, connector, store, clock):
        start = await connector.build_authorization_url(wants_poll=True)
        outcome = await connector.handle_callback(code="c", state=start.state)

        assert outcome.identity_id == CANVA_USER_ID
        assert outcome.team_id == CANVA_TEAM_ID
        assert len(outcome.user_token) == 48

        user = await store.get_user(CANVA_USER_ID)
        assert user.user_token == outcome.user_token
        assert user.tokens.access_token == "canva-access"
        assert user.tokens.refresh_token == "canva-refresh"
        assert user.tokens.obtained_at == clock.now

        poll = await connector.get_poll_result(start.poll_token)
        assert poll.ready is True
        assert poll.user_token == outcome.user_token

    @pytest.mark.asyncio
    async def test_exchange_uses_stored_verifier(self, connector, store, fake_canva):
        start = await connector.build_authorization_url()
        challenge = fake_canva.authorize_url.call_args.kwargs["code_challenge"]

        await connector.handle_callback(code="the-code", state=start.state)

        kwargs = fake_canva.exchange_authorization_code.call_args.kwargs
        assert kwargs["code"] == "the-code"
        assert pkce_challenge(kwargs["code_verifier"]) == challenge

    @pytest.mark.asyncio
    async def test_reconnect_keeps_user_token(self, connector):
        first = await connector.handle_callback(
            code="c", state=(await connector.build_authorization_url()).state
        )
        second = await connector.handle_callback(
            code="c", state=(await connector.build_authorization_url()).state
        )
        assert second.user_token == first.user_token

    @pytest.mark.asyncio
    async def test_state_cannot_be_replayed(self, connector, fake_canva):
        start = await connector.build_authorization_url()
        await connector.handle_callback(code="c", state=start.state)

        with pytest.raises(InvalidState):
            await connector.handle_callback(code="c", state=start.state)
        assert fake_canva.exchange_authorization_code.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_state(self, connector, fake_canva):
        with pytest.raises(InvalidState):
            await connector.handle_callback(code="c", state="forged")
        fake_canva.exchange_authorization_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_expired_state(self, connector, settings, clock, fake_canva):
        start = await connector.build_authorization_url()
        clock.now += timedelta(seconds=settings.pkce_state_ttl_seconds + 1)

        with pytest.raises(InvalidState):
            await connector.handle_callback(code="c", state=start.state)
        fake_canva.exchange_authorization_code.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exchange_failure_consumes_state(self, connector, store, fake_canva):
        fake_canva.exchange_authorization_code.side_effect = CanvaAPIError("token exchange", 400)
        start = await connector.build_authorization_url()

        with pytest.raises(TokenExchangeFailed):
            await connector.handle_callback(code="c", state=start.state)
        assert await store.pop_pkce_state(start.state) is None

    @pytest.mark.asyncio
    async def test_exchange_without_access_token(self, connector, fake_canva):
        fake_canva.exchange_authorization_code.return_value = {"token_type": "Bearer"}
        start = await connector.build_authorization_url()

        with pytest.raises(TokenExchangeFailed):
            await connector.handle_callback(code="c", state=start.state)

    @pytest.mark.asyncio
    async def test_identity_resolution_failure(self, connector, store, fake_canva):
        fake_canva.get_users_me.return_value = {"team_user": {}}
        start = await connector.build_authorization_url()

        with pytest.raises(IdentityResolutionFailed):
            await connector.handle_callback(code="c", state=start.state)
        assert await store.get_user(CANVA_USER_ID) is None

    @pytest.mark.asyncio
    async def test_users_me_error(self, connector, fake_canva):
        fake_canva.get_users_me.side_effect = CanvaAPIError("users/me", 401)
        start = await connector.build_authorization_url()

        with pytest.raises(IdentityResolutionFailed):
            await connector.handle_callback(code="c", state=start.state)


class TestCallbackTransportFailures:
    """Real CanvaClient with the network failing underneath it."""

    @pytest_asyncio.fixture
    async def live_connector(self, settings, store, clock):
        canva = CanvaClient(settings)
        yield OAuthConnector(settings, store, canva, clock=clock)
        await canva.aclose()

    @pytest.mark.asyncio
    @respx.mock
    async def test_exchange_connect_error(self, live_connector, store):
        respx.post(CANVA_TOKEN_URL).mock(side_effect=httpx.ConnectError("connection refused"))
        start = await live_connector.build_authorization_url()

        with pytest.raises(TokenExchangeFailed) as exc_info:
            await live_connector.handle_callback(code="c", state=start.state)
        assert exc_info.value.code == "token_exchange_failed"
        assert await store.pop_pkce_state(start.state) is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_users_me_timeout(self, live_connector, store):
        respx.post(CANVA_TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"access_token": "a", "refresh_token": "r", "expires_in": 60})
        )
        respx.get(CANVA_USERS_ME_URL).mock(side_effect=httpx.ReadTimeout("timed out"))
        start = await live_connector.build_authorization_url()

        with pytest.raises(IdentityResolutionFailed):
            await live_connector.handle_callback(code="c", state=start.state)
        assert await store.get_user(CANVA_USER_ID) is None


class TestGuestSession:
    @pytest.mark.asyncio
    async def test_guest_record(self, connector, store, settings, clock):
        session = await connector.create_guest_session(home_timezone="Europe/Berlin", gender="male")

        assert session.identity_id.startswith("guest_")
        assert len(session.identity_id) == len("guest_") + 32
        assert session.expires_at == clock.now + timedelta(days=settings.guest_session_days)
        assert session.gender == "male"

        user = await store.find_user_by_token(session.user_token)
        assert user.is_guest is True
        assert user.tokens is None

    @pytest.mark.asyncio
    async def test_unknown_gender_is_normalized(self, connector):
        session = await connector.create_guest_session(gender="other")
        assert session.gender == "prefer_not_to_say"


class TestPollResult:
    @pytest.mark.asyncio
    async def test_unknown_poll_token(self, connector):
        with pytest.raises(InvalidPollToken):
            await connector.get_poll_result("missing")
