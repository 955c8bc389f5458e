"""存储测试：内存与文件两种实现共享同一组行为。"""

import asyncio
import time

import pytest

from daytale.errors import EntryNotFoundError, PersistenceError, StoryNotFoundError
from daytale.models.bundle import Anchors, Suggestion
from daytale.models.story import StoryEntry
from daytale.storage.base import StoryStore, lease_key
from daytale.storage.files import FileStoryStore
from daytale.storage.memory import InMemoryStoryStore


def _entry(day: int, revision: int = 1) -> StoryEntry:
    return StoryEntry(
        day=day,
        user_event=f"第{day}天的事件",
        chapter_text="布布举盾。" * 10,
        title="石桥下的巨龙搏斗",
        anchors=Anchors(A="石桥", B="低语", C="疲惫"),
        suggestions=[Suggestion(text="守住石桥", uses_anchors=["A"]) for _ in range(5)],
        event_keywords=["石桥", "巨龙"],
        revision=revision,
    )


@pytest.fixture(params=["memory", "file"])
def any_store(request, tmp_path):
    if request.param == "memory":
        return InMemoryStoryStore()
    return FileStoryStore(tmp_path / "data")


def test_implements_protocol(any_store):
    assert isinstance(any_store, StoryStore)


def test_create_and_load(any_store):
    async def scenario():
        meta = await any_store.create_story("s1", "middle_earth", "初始摘要。")
        return meta, await any_store.load_state("s1")

    meta, state = asyncio.run(scenario())
    assert meta.story_id == "s1"
    assert state.day == 0
    assert state.summary == "初始摘要。"
    assert state.world_id == "middle_earth"


def test_duplicate_story_is_rejected(any_store):
    async def scenario():
        await any_store.create_story("s1", "middle_earth", "摘要。")
        await any_store.create_story("s1", "middle_earth", "摘要。")

    with pytest.raises(PersistenceError):
        asyncio.run(scenario())


def test_missing_story(any_store):
    with pytest.raises(StoryNotFoundError):
        asyncio.run(any_store.load_state("missing"))
    with pytest.raises(StoryNotFoundError):
        asyncio.run(any_store.set_active_story("missing"))
    assert asyncio.run(any_store.get_story_meta("missing")) is None


def test_entries_round_trip_in_day_order(any_store):
    async def scenario():
        await any_store.create_story("s1", "middle_earth", "摘要。")
        await any_store.save_entry("s1", _entry(2))
        await any_store.save_entry("s1", _entry(1))
        return (
            await any_store.load_entries("s1"),
            await any_store.get_entry_by_day("s1", 2),
            await any_store.get_entry_by_day("s1", 3),
        )

    entries, day_two, missing = asyncio.run(scenario())
    assert [e.day for e in entries] == [1, 2]
    assert day_two.user_event == "第2天的事件"
    assert day_two.anchors.A == "石桥"
    assert missing is None


def test_update_entry_in_place(any_store):
    async def scenario():
        await any_store.create_story("s1", "middle_earth", "摘要。")
        await any_store.save_entry("s1", _entry(1))
        updated = await any_store.update_entry(
            "s1", 1, {"user_event": "新的事件", "revision": 2, "day": 9}
        )
        return updated, await any_store.load_entries("s1")

    updated, entries = asyncio.run(scenario())
    assert updated.day == 1
    assert updated.revision == 2
    assert updated.user_event == "新的事件"
    assert len(entries) == 1
    assert entries[0].revision == 2


def test_update_missing_entry(any_store):
    async def scenario():
        await any_store.create_story("s1", "middle_earth", "摘要。")
        await any_store.update_entry("s1", 4, {"revision": 2})

    with pytest.raises(EntryNotFoundError) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.day == 4


def test_active_story_and_listing(any_store):
    async def scenario():
        await any_store.create_story("s1", "middle_earth", "摘要。")
        await any_store.create_story("s2", "future_city", "摘要。")
        before = await any_store.get_active_story()
        await any_store.set_active_story("s2")
        return before, await any_store.get_active_story(), await any_store.list_stories()

    before, active, stories = asyncio.run(scenario())
    assert before is None
    assert active == "s2"
    assert {m.story_id for m in stories} == {"s1", "s2"}


def test_lease_is_exclusive_until_released(any_store):
    key = lease_key("s1")

    async def scenario():
        first = await any_store.acquire_lease(key, 180)
        second = await any_store.acquire_lease(key, 180)
        await any_store.release_lease(key)
        third = await any_store.acquire_lease(key, 180)
        return first, second, third

    assert asyncio.run(scenario()) == (True, False, True)


def test_lease_key_format():
    assert lease_key("s_1") == "story:s_1:lease"


def test_memory_lease_expires():
    now = [100.0]
    store = InMemoryStoryStore(clock=lambda: now[0])
    key = lease_key("s1")
    assert asyncio.run(store.acquire_lease(key, 180))
    now[0] += 179
    assert not asyncio.run(store.acquire_lease(key, 180))
    now[0] += 2
    assert asyncio.run(store.acquire_lease(key, 180))


def test_file_lease_expires(tmp_path):
    store = FileStoryStore(tmp_path)
    key = lease_key("s1")
    assert asyncio.run(store.acquire_lease(key, 180))
    store._lease_path(key).write_text(str(time.time() - 1), encoding="utf-8")
    assert asyncio.run(store.acquire_lease(key, 180))
    assert not asyncio.run(store.acquire_lease(key, 180))


def test_file_lease_reclaim_leaves_fresh_lease_alone(tmp_path):
    """另一进程已重新拿到租约时，按旧内容回收不能删掉它。"""
    store = FileStoryStore(tmp_path)
    key = lease_key("s1")
    assert asyncio.run(store.acquire_lease(key, 180))
    path = store._lease_path(key)
    fresh = path.read_text(encoding="utf-8")

    assert not store._reclaim_stale_lease(path, f"{time.time() - 1} old")
    assert path.read_text(encoding="utf-8") == fresh
    assert not asyncio.run(store.acquire_lease(key, 180))
    assert sorted(p.name for p in store.leases_dir.iterdir()) == [path.name]


def test_file_lease_reclaim_removes_matching_stale_lease(tmp_path):
    store = FileStoryStore(tmp_path)
    path = store._lease_path(lease_key("s1"))
    stale = f"{time.time() - 1} old"
    path.write_text(stale, encoding="utf-8")

    assert store._reclaim_stale_lease(path, stale)
    assert not path.exists()
    assert list(store.leases_dir.iterdir()) == []


def test_memory_store_returns_copies():
    store = InMemoryStoryStore()

    async def scenario():
        await store.create_story("s1", "middle_earth", "摘要。")
        state = await store.load_state("s1")
        state.day = 99
        return await store.load_state("s1")

    assert asyncio.run(scenario()).day == 0


def test_file_store_survives_reopen(tmp_path):
    async def write():
        store = FileStoryStore(tmp_path)
        await store.create_story("s1", "middle_earth", "摘要。")
        await store.save_entry("s1", _entry(1))
        await store.set_active_story("s1")

    async def read():
        store = FileStoryStore(tmp_path)
        return await store.get_active_story(), await store.load_entries("s1")

    asyncio.run(write())
    active, entries = asyncio.run(read())
    assert active == "s1"
    assert entries[0].title == "石桥下的巨龙搏斗"
    assert (tmp_path / "stories" / "s1" / "entries" / "day_001.json").exists()


def test_file_store_corrupt_state(tmp_path):
    store = FileStoryStore(tmp_path)
    asyncio.run(store.create_story("s1", "middle_earth", "摘要。"))
    (tmp_path / "stories" / "s1" / "state.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(PersistenceError, match="损坏"):
        asyncio.run(store.load_state("s1"))
