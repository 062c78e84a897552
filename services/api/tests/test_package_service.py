"""Habits and design packages on the user record."""

import base64
import json

import pytest
import pytest_asyncio

from visionboard.errors import InvalidRequest, NotFound
from visionboard.services import package_service
from visionboard.services.crypto_service import CryptoService
from visionboard.services.identity_store import FileIdentityStore, SqlIdentityStore, UserRecord
from visionboard.services.token_service import ProviderTokens


def _jwt(payload) -> str:
    body = base64.urlsafe_b64encode(json.dumps(payload).encode()).rstrip(b"=").decode()
    return f"header.{body}.sig"


@pytest.fixture
def store(file_settings):
    return FileIdentityStore(file_settings.data_dir, CryptoService(file_settings))


@pytest_asyncio.fixture
async def user(store):
    record = UserRecord(identity_id="u1", user_token="tok-1")
    await store.put_user(record)
    return record


class TestHabits:
    def test_sanitize(self):
        raw = [{"id": "h1", "name": "Run"}, {"id": "h2"}, None, {"id": 3, "name": "Read"}]
        assert package_service.sanitize_habits(raw) == [
            {"id": "h1", "name": "Run"},
            {"id": "3", "name": "Read"},
        ]

    @pytest.mark.asyncio
    async def test_replace_persists(self, store, user):
        await package_service.replace_habits(store, user, [{"id": "h1", "name": "Run"}])
        assert (await store.get_user("u1")).habits == [{"id": "h1", "name": "Run"}]


class TestDesignId:
    def test_explicit_design_id_wins(self):
        assert package_service.resolve_design_id({"designId": "D1", "designToken": _jwt({"designId": "D2"})}) == "D1"

    def test_from_design_token(self):
        assert package_service.resolve_design_id({"designToken": _jwt({"designId": "D2"})}) == "D2"

    @pytest.mark.parametrize(
        "body",
        [{}, {"designId": ""}, {"designToken": "not-a-jwt"}, {"designToken": "a.!!!.c"}, {"designToken": _jwt([1])}],
    )
    def test_missing(self, body):
        with pytest.raises(InvalidRequest) as exc_info:
            package_service.resolve_design_id(body)
        assert exc_info.value.code == "missing_designId"


class TestPanelMappings:
    def test_joins_selection_with_mappings(self):
        body = {
            "version": 1,
            "selection": [
                {"key": "k1", "elementId": "e1", "kind": "image", "bounds": {"left": 1, "top": 2, "width": 3, "height": 4}},
                {"key": "k2", "kind": "text"},
                {"key": "k3"},
            ],
            "mappings": [{"key": "k1", "habitId": "h1"}, {"key": "k2", "habitId": "h2"}, {"key": "", "habitId": "x"}],
        }

        first, second = package_service.mapped_elements_from_panel(body)

        assert first["habitId"] == "h1"
        assert first["elementId"] == "e1"
        assert first["bounds"] == {"x": 1, "y": 2, "w": 3, "h": 4, "rotation": None}
        assert second["kind"] == "text"
        assert second["bounds"] is None


class TestPackages:
    @pytest.mark.asyncio
    async def test_create_newest_first(self, store, user):
        first = await package_service.create_package(store, user, {"designId": "D1", "title": "One"})
        second = await package_service.create_package(
            store,
            user,
            {
                "designId": "D2",
                "version": 1,
                "selection": [{"key": "k"}],
                "mappings": [{"key": "k", "habitId": "h"}],
                "createdAt": 1700000000000,
            },
        )

        saved = await store.get_user("u1")
        assert [p["id"] for p in saved.packages] == [second["id"], first["id"]]
        assert second["mappedElements"][0]["habitId"] == "h"
        assert second["createdAt"] == 1700000000000
        assert package_service.latest_package(saved)["designId"] == "D2"
        assert package_service.find_package(saved, first["id"])["title"] == "One"

    def test_lookup_errors(self):
        user = UserRecord(identity_id="u1", user_token="tok-1")
        with pytest.raises(NotFound) as exc_info:
            package_service.latest_package(user)
        assert exc_info.value.code == "no_packages"
        with pytest.raises(NotFound) as exc_info:
            package_service.find_package(user, "nope")
        assert exc_info.value.code == "package_not_found"

    @pytest.mark.asyncio
    async def test_attach_export(self, store, user):
        package = await package_service.create_package(store, user, {"designId": "D1"})

        attached = await package_service.attach_export(store, "u1", package["id"], {"urls": ["u"]})

        assert attached is True
        saved = await store.get_user("u1")
        assert package_service.list_packages(saved)[0]["hasExport"] is True
        assert await package_service.attach_export(store, "u1", "missing", {"urls": []}) is False
        assert await package_service.attach_export(store, "ghost", package["id"], {}) is False


class TestConcurrentTokenRefresh:
    """A token refresh that lands between loading the user and writing must survive."""

    @pytest.fixture(params=["file", "sql"])
    def any_store(self, request, file_settings, database, crypto):
        if request.param == "sql":
            return SqlIdentityStore(database, crypto)
        return FileIdentityStore(file_settings.data_dir, CryptoService(file_settings))

    @pytest_asyncio.fixture
    async def stale_user(self, any_store):
        await any_store.put_user(
            UserRecord(
                identity_id="u1",
                user_token="tok-1",
                tokens=ProviderTokens(access_token="old-access", refresh_token="old-refresh"),
            )
        )
        original_get_user = any_store.get_user

        async def get_user_then_refresh(identity_id):
            record = await original_get_user(identity_id)
            await any_store.save_tokens(
                identity_id, ProviderTokens(access_token="new-access", refresh_token="new-refresh")
            )
            return record

        any_store.get_user = get_user_then_refresh
        user = await any_store.get_user("u1")
        any_store.get_user = original_get_user
        return user

    @pytest.mark.asyncio
    async def test_replace_habits(self, any_store, stale_user):
        assert stale_user.tokens.refresh_token == "old-refresh"

        await package_service.replace_habits(any_store, stale_user, [{"id": "h1", "name": "Run"}])

        saved = await any_store.get_user("u1")
        assert saved.habits == [{"id": "h1", "name": "Run"}]
        assert saved.tokens.refresh_token == "new-refresh"
        assert saved.tokens.access_token == "new-access"

    @pytest.mark.asyncio
    async def test_create_package(self, any_store, stale_user):
        await package_service.create_package(any_store, stale_user, {"designId": "D1"})

        saved = await any_store.get_user("u1")
        assert len(saved.packages) == 1
        assert saved.tokens.refresh_token == "new-refresh"

    @pytest.mark.asyncio
    async def test_attach_export(self, any_store, stale_user):
        package = await package_service.create_package(any_store, stale_user, {"designId": "D1"})
        await any_store.save_tokens("u1", ProviderTokens(access_token="newer-access", refresh_token="newer-refresh"))

        assert await package_service.attach_export(any_store, "u1", package["id"], {"urls": ["u"]}) is True

        saved = await any_store.get_user("u1")
        assert saved.tokens.refresh_token == "newer-refresh"
        assert saved.packages[0]["export"] == {"urls": ["u"]}

    @pytest.mark.asyncio
    async def test_unknown_user(self, any_store):
        ghost = UserRecord(identity_id="ghost", user_token="t")
        with pytest.raises(NotFound):
            await package_service.replace_habits(any_store, ghost, [])
        with pytest.raises(NotFound):
            await package_service.create_package(any_store, ghost, {"designId": "D1"})
