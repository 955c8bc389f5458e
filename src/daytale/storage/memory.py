"""内存存储：用于测试与离线演示。"""

from __future__ import annotations

import time
from typing import Any, Callable

from daytale.errors import EntryNotFoundError, PersistenceError, StoryNotFoundError
from daytale.models.story import StoryEntry, StoryMeta, StoryState, utc_now


class InMemoryStoryStore:
    """基于 dict 的 StoryStore 实现。返回的对象都是副本。"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._states: dict[str, StoryState] = {}
        self._entries: dict[str, dict[int, StoryEntry]] = {}
        self._meta: dict[str, StoryMeta] = {}
        self._leases: dict[str, float] = {}
        self._active: str | None = None
        self._clock = clock

    async def load_state(self, story_id: str) -> StoryState:
        state = self._states.get(story_id)
        if state is None:
            raise StoryNotFoundError(story_id)
        return state.model_copy(deep=True)

    async def save_state(self, story_id: str, state: StoryState) -> None:
        self._states[story_id] = state.model_copy(deep=True)
        if story_id in self._meta:
            self._meta[story_id] = self._meta[story_id].model_copy(update={"updated_at": utc_now()})

    async def load_entries(self, story_id: str) -> list[StoryEntry]:
        entries = self._entries.get(story_id, {})
        return [entries[d].model_copy(deep=True) for d in sorted(entries)]

    async def save_entry(self, story_id: str, entry: StoryEntry) -> None:
        self._entries.setdefault(story_id, {})[entry.day] = entry.model_copy(deep=True)

    async def update_entry(self, story_id: str, day: int, changes: dict[str, Any]) -> StoryEntry:
        current = self._entries.get(story_id, {}).get(day)
        if current is None:
            raise EntryNotFoundError(story_id, day)
        updated = StoryEntry.model_validate(
            current.model_dump() | changes | {"day": day, "updated_at": utc_now()}
        )
        self._entries[story_id][day] = updated
        return updated.model_copy(deep=True)

    async def get_entry_by_day(self, story_id: str, day: int) -> StoryEntry | None:
        entry = self._entries.get(story_id, {}).get(day)
        return entry.model_copy(deep=True) if entry else None

    async def create_story(self, story_id: str, world_id: str, initial_summary: str) -> StoryMeta:
        if story_id in self._states:
            raise PersistenceError(f"故事已存在: {story_id}")
        meta = StoryMeta(story_id=story_id, world_id=world_id)
        self._meta[story_id] = meta
        self._states[story_id] = StoryState(
            story_id=story_id, day=0, summary=initial_summary, world_id=world_id
        )
        self._entries[story_id] = {}
        return meta.model_copy()

    async def list_stories(self) -> list[StoryMeta]:
        return sorted(
            (m.model_copy() for m in self._meta.values()),
            key=lambda m: m.updated_at,
            reverse=True,
        )

    async def get_story_meta(self, story_id: str) -> StoryMeta | None:
        meta = self._meta.get(story_id)
        return meta.model_copy() if meta else None

    async def set_active_story(self, story_id: str) -> None:
        if story_id not in self._meta:
            raise StoryNotFoundError(story_id)
        self._active = story_id

    async def get_active_story(self) -> str | None:
        return self._active

    async def acquire_lease(self, key: str, ttl_seconds: float) -> bool:
        now = self._clock()
        expires = self._leases.get(key)
        if expires is not None and expires > now:
            return False
        self._leases[key] = now + ttl_seconds
        return True

    async def release_lease(self, key: str) -> None:
        self._leases.pop(key, None)
