"""Sync protocol tests against SQLite: idempotent push, deletes, retention."""

from datetime import date, timedelta

import pytest
from sqlalchemy import func, select

from visionboard.models.sync import ChecklistEvent, HabitCompletion, UserSettings
from visionboard.schemas.sync import SettingsUpdate, SyncPushRequest, parse_logical_date
from visionboard.services import sync_service

IDENTITY = "guest_abc"
RETAIN_DAYS = 90


def _today() -> date:
    return sync_service.retention_cutoff(0)


def _days_ago(n: int) -> str:
    return (_today() - timedelta(days=n)).isoformat()


def _completion(**overrides) -> dict:
    entry = {
        "boardId": "b1",
        "componentId": "c1",
        "habitId": "h1",
        "logicalDate": _days_ago(1),
        "rating": 4,
        "note": "felt good",
    }
    entry.update(overrides)
    return entry


def _checklist(**overrides) -> dict:
    entry = {
        "boardId": "b1",
        "componentId": "c2",
        "taskId": "t1",
        "itemId": "i1",
        "logicalDate": _days_ago(2),
    }
    entry.update(overrides)
    return entry


async def _count(db, model) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(model.identity_id == IDENTITY))
    return result.scalar_one()


async def _push(db, **body) -> sync_service.PushResult:
    return await sync_service.push(db, IDENTITY, SyncPushRequest.model_validate(body), RETAIN_DAYS)


class TestLogicalDate:
    def test_valid(self):
        assert parse_logical_date("2026-02-28") == date(2026, 2, 28)

    @pytest.mark.parametrize("value", ["2026-02-30", "2026-2-1", "20260201", "", None, 20260201])
    def test_invalid(self, value):
        with pytest.raises(ValueError):
            parse_logical_date(value)


class TestRetentionCutoff:
    def test_cutoff(self):
        assert sync_service.retention_cutoff(90, today=date(2026, 4, 1)) == date(2026, 1, 1)


class TestPush:
    @pytest.mark.asyncio
    async def test_replay_is_idempotent(self, db_session):
        body = {"habitCompletions": [_completion()], "checklistEvents": [_checklist()]}

        first = await _push(db_session, **body)
        second = await _push(db_session, **body)

        assert first == sync_service.PushResult(applied=2, skipped=0)
        assert second == first
        assert await _count(db_session, HabitCompletion) == 1
        assert await _count(db_session, ChecklistEvent) == 1

    @pytest.mark.asyncio
    async def test_overwrite_replaces_rating_and_note(self, db_session):
        await _push(db_session, habitCompletions=[_completion()])
        await _push(db_session, habitCompletions=[_completion(rating=2, note=None)])

        row = (await db_session.execute(select(HabitCompletion))).scalar_one()
        assert row.rating == 2
        assert row.note is None

    @pytest.mark.asyncio
    async def test_delete_tombstone(self, db_session):
        await _push(db_session, habitCompletions=[_completion()], checklistEvents=[_checklist()])
        result = await _push(
            db_session,
            habitCompletions=[_completion(deleted=True)],
            checklistEvents=[_checklist(deleted=1)],
        )

        assert result.applied == 2
        assert await _count(db_session, HabitCompletion) == 0
        assert await _count(db_session, ChecklistEvent) == 0

    @pytest.mark.asyncio
    async def test_delete_of_missing_row_is_harmless(self, db_session):
        result = await _push(db_session, habitCompletions=[_completion(deleted=True)])
        assert result.applied == 1

    @pytest.mark.asyncio
    async def test_invalid_entries_are_skipped(self, db_session):
        result = await _push(
            db_session,
            habitCompletions=[
                _completion(),
                _completion(logicalDate="2026-13-01"),
                _completion(habitId=""),
                _completion(boardId=7),
                "not-an-object",
            ],
            checklistEvents=[_checklist(itemId=None)],
            boards=[{"boardJson": {}}],
        )
        assert result == sync_service.PushResult(applied=1, skipped=6)

    @pytest.mark.asyncio
    async def test_non_numeric_rating_is_stored_as_null(self, db_session):
        await _push(db_session, habitCompletions=[_completion(rating="5", note=12)])
        row = (await db_session.execute(select(HabitCompletion))).scalar_one()
        assert row.rating is None
        assert row.note is None

    @pytest.mark.asyncio
    async def test_push_prunes_old_rows(self, db_session):
        result = await _push(
            db_session,
            habitCompletions=[_completion(logicalDate=_days_ago(RETAIN_DAYS + 5)), _completion()],
        )
        assert result.applied == 2
        assert await _count(db_session, HabitCompletion) == 1

    @pytest.mark.asyncio
    async def test_board_upsert(self, db_session):
        await _push(db_session, boards=[{"boardId": "b1", "boardJson": {"title": "v1"}}])
        await _push(db_session, boards=[{"boardId": "b1", "boardJson": {"title": "v2"}}])

        snapshot = await sync_service.bootstrap(db_session, IDENTITY, RETAIN_DAYS)
        assert [b["boardJson"] for b in snapshot["boards"]] == [{"title": "v2"}]


class TestSettings:
    @pytest.mark.asyncio
    async def test_profile_fields_survive_partial_update(self, db_session):
        await _push(
            db_session,
            userSettings={
                "homeTimezone": "Europe/Paris",
                "gender": "female",
                "displayName": "  Ana ",
                "weightKg": "61.5",
                "heightCm": 170,
                "dateOfBirth": "1990-05-17",
            },
        )
        await _push(db_session, userSettings={"homeTimezone": "Europe/Lisbon"})

        row = await db_session.get(UserSettings, IDENTITY)
        await db_session.refresh(row)
        assert row.home_timezone == "Europe/Lisbon"
        assert row.gender == "prefer_not_to_say"
        assert row.display_name == "Ana"
        assert row.weight_kg == 61.5
        assert row.height_cm == 170
        assert row.date_of_birth == date(1990, 5, 17)

    @pytest.mark.asyncio
    async def test_put_user_settings_snake_case(self, db_session):
        saved = await sync_service.put_user_settings(
            db_session,
            IDENTITY,
            SettingsUpdate.model_validate({"home_timezone": "UTC", "gender": "male", "date_of_birth": "bad"}),
        )
        assert saved == {
            "home_timezone": "UTC",
            "gender": "male",
            "display_name": None,
            "weight_kg": None,
            "height_cm": None,
            "date_of_birth": None,
        }

    @pytest.mark.asyncio
    async def test_push_never_touches_subscription(self, db_session):
        db_session.add(UserSettings(identity_id=IDENTITY, subscription_plan_id="pro", subscription_active=True))
        await db_session.commit()

        await _push(db_session, userSettings={"homeTimezone": "UTC"})

        snapshot = await sync_service.bootstrap(db_session, IDENTITY, RETAIN_DAYS)
        assert snapshot["subscription_plan_id"] == "pro"
        assert snapshot["subscription_active"] is True


class TestBootstrap:
    @pytest.mark.asyncio
    async def test_empty_snapshot(self, db_session):
        snapshot = await sync_service.bootstrap(db_session, IDENTITY, RETAIN_DAYS)
        assert snapshot == {
            "ok": True,
            "home_timezone": None,
            "gender": "prefer_not_to_say",
            "display_name": None,
            "weight_kg": None,
            "height_cm": None,
            "date_of_birth": None,
            "subscription_plan_id": None,
            "subscription_active": False,
            "boards": [],
            "habit_completions": [],
            "checklist_events": [],
            "retain_days": RETAIN_DAYS,
        }

    @pytest.mark.asyncio
    async def test_events_newest_first_and_retained_only(self, db_session):
        await _push(
            db_session,
            habitCompletions=[
                _completion(habitId="h-old", logicalDate=_days_ago(10)),
                _completion(habitId="h-new", logicalDate=_days_ago(0)),
                _completion(habitId="h-mid", logicalDate=_days_ago(5)),
            ],
        )

        snapshot = await sync_service.bootstrap(db_session, IDENTITY, RETAIN_DAYS)
        assert [c["habitId"] for c in snapshot["habit_completions"]] == ["h-new", "h-mid", "h-old"]
        assert snapshot["habit_completions"][0]["logicalDate"] == _days_ago(0)

        narrow = await sync_service.bootstrap(db_session, IDENTITY, 7)
        assert [c["habitId"] for c in narrow["habit_completions"]] == ["h-new", "h-mid"]

    @pytest.mark.asyncio
    async def test_other_identities_are_invisible(self, db_session):
        await sync_service.push(
            db_session, "someone-else", SyncPushRequest.model_validate({"habitCompletions": [_completion()]}), 90
        )
        snapshot = await sync_service.bootstrap(db_session, IDENTITY, RETAIN_DAYS)
        assert snapshot["habit_completions"] == []


class TestPruneLogs:
    @pytest.mark.asyncio
    async def test_global_prune(self, db_session):
        old = _today() - timedelta(days=200)
        for identity in ("a", "b"):
            db_session.add(
                HabitCompletion(
                    identity_id=identity,
                    board_id="b",
                    component_id="c",
                    habit_id="h",
                    logical_date=old,
                )
            )
        await db_session.commit()

        removed = await sync_service.prune_logs(db_session, sync_service.retention_cutoff(RETAIN_DAYS))
        await db_session.commit()
        assert removed == 2
