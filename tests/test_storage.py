"""Tests for the minutes repositories."""

from dataclasses import replace

import pytest

from lark_minutes.models import ActionItem, Minutes, MinutesMetadata, Speaker, TopicSegment
from lark_minutes.storage.minutes_store import (
    InMemoryMinutesRepository,
    SqliteMinutesRepository,
    create_repository,
)


def make_minutes(minutes_id="min_m1_1", meeting_id="m1", summary="summary"):
    return Minutes(
        id=minutes_id,
        meeting_id=meeting_id,
        title="Weekly sync",
        date="2024-01-15",
        duration=600_000,
        summary=summary,
        metadata=MinutesMetadata(
            generated_at="2024-01-15T10:00:00+00:00",
            model="claude-test",
            processing_time_ms=1500,
            confidence=0.8,
        ),
        topics=[
            TopicSegment(
                id="topic_0",
                title="Plan",
                start_time=0,
                end_time=600_000,
                summary="Planning",
                key_points=["ship"],
                speakers=[Speaker(id="speaker_0", name="田中")],
            )
        ],
        action_items=[
            ActionItem(
                id="act_0",
                content="Write notes",
                priority="high",
                assignee=Speaker(id="assignee_0", name="Sato", lark_user_id="ou_2"),
            )
        ],
    )


@pytest.fixture
async def sqlite_repo(tmp_path):
    repo = SqliteMinutesRepository(tmp_path / "nested" / "minutes.db")
    await repo.start()
    yield repo
    await repo.stop()


@pytest.fixture
async def memory_repo():
    repo = InMemoryMinutesRepository()
    await repo.start()
    yield repo
    await repo.stop()


@pytest.fixture(params=["memory", "sqlite"])
async def repo(request, memory_repo, sqlite_repo):
    return memory_repo if request.param == "memory" else sqlite_repo


class TestMinutesRepository:
    async def test_save_and_get(self, repo):
        minutes = make_minutes()
        await repo.save(minutes)
        assert await repo.get("min_m1_1") == minutes

    async def test_get_missing(self, repo):
        assert await repo.get("nope") is None

    async def test_save_is_upsert(self, repo):
        await repo.save(make_minutes())
        await repo.save(make_minutes(summary="revised"))
        assert (await repo.get("min_m1_1")).summary == "revised"

    async def test_latest_for_meeting(self, repo):
        await repo.save(make_minutes("min_m1_1"))
        await repo.save(make_minutes("min_m2_1", meeting_id="m2"))
        await repo.save(make_minutes("min_m1_2"))
        latest = await repo.latest_for_meeting("m1")
        assert latest is not None
        assert latest.id == "min_m1_2"
        assert await repo.latest_for_meeting("m3") is None

    async def test_nested_values_survive(self, repo):
        minutes = make_minutes()
        await repo.save(minutes)
        loaded = await repo.get(minutes.id)
        assert loaded.topics[0].speakers[0].name == "田中"
        assert loaded.action_items[0].assignee.lark_user_id == "ou_2"
        assert loaded.metadata == minutes.metadata


class TestSqliteRepository:
    async def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "minutes.db"
        first = SqliteMinutesRepository(path)
        await first.start()
        await first.save(make_minutes())
        await first.stop()

        second = SqliteMinutesRepository(path)
        await second.start()
        try:
            assert (await second.get("min_m1_1")).title == "Weekly sync"
        finally:
            await second.stop()

    async def test_stop_is_idempotent(self, tmp_path):
        repo = SqliteMinutesRepository(tmp_path / "m.db")
        await repo.start()
        await repo.stop()
        await repo.stop()


class TestCreateRepository:
    def test_memory(self, tmp_path):
        assert isinstance(create_repository("memory", tmp_path / "x.db"), InMemoryMinutesRepository)

    def test_sqlite(self, tmp_path):
        assert isinstance(create_repository("sqlite", tmp_path / "x.db"), SqliteMinutesRepository)

    async def test_in_memory_latest_follows_save_order(self):
        repo = InMemoryMinutesRepository()
        first = make_minutes("a")
        await repo.save(first)
        await repo.save(make_minutes("b"))
        await repo.save(replace(first, summary="again"))
        assert (await repo.latest_for_meeting("m1")).id == "a"
