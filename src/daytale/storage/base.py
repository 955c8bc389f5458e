"""故事状态存储接口。

管线只依赖这个协议；读写失败以 PersistenceError（及其子类）抛出。
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from daytale.models.story import StoryEntry, StoryMeta, StoryState


def lease_key(story_id: str) -> str:
    return f"story:{story_id}:lease"


@runtime_checkable
class StoryStore(Protocol):
    """逐日条目与权威状态的异步存储。"""

    async def load_state(self, story_id: str) -> StoryState:
        """不存在时抛出 StoryNotFoundError。"""
        ...

    async def save_state(self, story_id: str, state: StoryState) -> None: ...

    async def load_entries(self, story_id: str) -> list[StoryEntry]:
        """按天升序返回全部条目。"""
        ...

    async def save_entry(self, story_id: str, entry: StoryEntry) -> None: ...

    async def update_entry(self, story_id: str, day: int, changes: dict[str, Any]) -> StoryEntry:
        """原地更新某天条目；该天不存在时抛出 EntryNotFoundError。"""
        ...

    async def get_entry_by_day(self, story_id: str, day: int) -> StoryEntry | None: ...

    async def create_story(self, story_id: str, world_id: str, initial_summary: str) -> StoryMeta: ...

    async def list_stories(self) -> list[StoryMeta]: ...

    async def get_story_meta(self, story_id: str) -> StoryMeta | None: ...

    async def set_active_story(self, story_id: str) -> None: ...

    async def get_active_story(self) -> str | None: ...

    async def acquire_lease(self, key: str, ttl_seconds: float) -> bool:
        """键不存在（或已过期）时占用并返回 True，否则返回 False。"""
        ...

    async def release_lease(self, key: str) -> None: ...
