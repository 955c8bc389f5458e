"""FileStoryStore：以 JSON 文件持久化故事状态。

目录结构：
<root>/
├── stories/<story_id>/
│   ├── meta.json              # 世界、创建/更新时间
│   ├── state.json             # 天数与权威摘要
│   └── entries/day_###.json   # 逐日条目
├── leases/<key>.lock          # 单故事租约（过期时间戳 + 唯一令牌）
└── active.json                # 当前活跃故事

所有磁盘读写通过 asyncio.to_thread 执行，OSError 统一包装为 PersistenceError。
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import os
import re
import time
import uuid
from pathlib import Path
from typing import Any, Callable, TypeVar

from daytale.errors import EntryNotFoundError, PersistenceError, StoryNotFoundError
from daytale.models.story import StoryEntry, StoryMeta, StoryState, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9_.-]")


def _blocking(func: Callable[..., T]) -> Callable[..., Any]:
    """把同步磁盘操作放到线程中执行，并包装 OSError。"""

    @functools.wraps(func)
    async def wrapper(self: FileStoryStore, *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.to_thread(func, self, *args, **kwargs)
        except OSError as e:
            raise PersistenceError(f"存储读写失败: {e}") from e

    return wrapper


class FileStoryStore:
    """基于本地 JSON 文件的 StoryStore 实现。"""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.stories_dir = self.root / "stories"
        self.leases_dir = self.root / "leases"
        for d in [self.stories_dir, self.leases_dir]:
            d.mkdir(parents=True, exist_ok=True)

    # ────────────────────────────────────────────
    # 路径与 JSON 读写
    # ────────────────────────────────────────────

    def _story_dir(self, story_id: str) -> Path:
        safe = _SAFE_NAME_RE.sub("_", story_id)
        return self.stories_dir / safe

    def _entry_path(self, story_id: str, day: int) -> Path:
        return self._story_dir(story_id) / "entries" / f"day_{day:03d}.json"

    def _lease_path(self, key: str) -> Path:
        return self.leases_dir / f"{_SAFE_NAME_RE.sub('_', key)}.lock"

    def _write_json(self, filepath: Path, data: Any) -> None:
        """先写临时文件再替换，避免读到半截内容。"""
        filepath.parent.mkdir(parents=True, exist_ok=True)
        tmp = filepath.with_suffix(filepath.suffix + ".tmp")
        tmp.write_text(
            json.dumps(data, ensure_ascii=False, indent=2, default=str),
            encoding="utf-8",
        )
        os.replace(tmp, filepath)

    def _read_json(self, filepath: Path) -> Any:
        try:
            return json.loads(filepath.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise PersistenceError(f"文件内容损坏: {filepath}") from e

    def _touch_meta(self, story_id: str) -> None:
        meta_path = self._story_dir(story_id) / "meta.json"
        if meta_path.exists():
            meta = StoryMeta.model_validate(self._read_json(meta_path))
            meta.updated_at = utc_now()
            self._write_json(meta_path, meta.model_dump(mode="json"))

    # ────────────────────────────────────────────
    # 状态
    # ────────────────────────────────────────────

    @_blocking
    def load_state(self, story_id: str) -> StoryState:
        path = self._story_dir(story_id) / "state.json"
        if not path.exists():
            raise StoryNotFoundError(story_id)
        return StoryState.model_validate(self._read_json(path))

    @_blocking
    def save_state(self, story_id: str, state: StoryState) -> None:
        self._write_json(self._story_dir(story_id) / "state.json", state.model_dump(mode="json"))
        self._touch_meta(story_id)
        logger.debug("状态已写入: story=%s day=%d", story_id, state.day)

    # ────────────────────────────────────────────
    # 条目
    # ────────────────────────────────────────────

    @_blocking
    def load_entries(self, story_id: str) -> list[StoryEntry]:
        entries_dir = self._story_dir(story_id) / "entries"
        if not entries_dir.exists():
            return []
        entries = [
            StoryEntry.model_validate(self._read_json(p))
            for p in entries_dir.glob("day_*.json")
        ]
        return sorted(entries, key=lambda e: e.day)

    @_blocking
    def save_entry(self, story_id: str, entry: StoryEntry) -> None:
        path = self._entry_path(story_id, entry.day)
        self._write_json(path, entry.model_dump(mode="json"))
        logger.info("📄 第%d天条目已写入: %s (rev %d)", entry.day, path.name, entry.revision)

    @_blocking
    def update_entry(self, story_id: str, day: int, changes: dict[str, Any]) -> StoryEntry:
        path = self._entry_path(story_id, day)
        if not path.exists():
            raise EntryNotFoundError(story_id, day)
        current = StoryEntry.model_validate(self._read_json(path))
        updated = StoryEntry.model_validate(
            current.model_dump() | changes | {"day": day, "updated_at": utc_now()}
        )
        self._write_json(path, updated.model_dump(mode="json"))
        logger.info("📝 第%d天条目已更新: rev %d", day, updated.revision)
        return updated

    @_blocking
    def get_entry_by_day(self, story_id: str, day: int) -> StoryEntry | None:
        path = self._entry_path(story_id, day)
        if not path.exists():
            return None
        return StoryEntry.model_validate(self._read_json(path))

    # ────────────────────────────────────────────
    # 多故事簿记
    # ────────────────────────────────────────────

    @_blocking
    def create_story(self, story_id: str, world_id: str, initial_summary: str) -> StoryMeta:
        story_dir = self._story_dir(story_id)
        if (story_dir / "state.json").exists():
            raise PersistenceError(f"故事已存在: {story_id}")
        meta = StoryMeta(story_id=story_id, world_id=world_id)
        state = StoryState(story_id=story_id, day=0, summary=initial_summary, world_id=world_id)
        (story_dir / "entries").mkdir(parents=True, exist_ok=True)
        self._write_json(story_dir / "meta.json", meta.model_dump(mode="json"))
        self._write_json(story_dir / "state.json", state.model_dump(mode="json"))
        logger.info("新故事已创建: %s (world=%s)", story_id, world_id)
        return meta

    @_blocking
    def list_stories(self) -> list[StoryMeta]:
        metas = [
            StoryMeta.model_validate(self._read_json(p))
            for p in self.stories_dir.glob("*/meta.json")
        ]
        return sorted(metas, key=lambda m: m.updated_at, reverse=True)

    @_blocking
    def get_story_meta(self, story_id: str) -> StoryMeta | None:
        path = self._story_dir(story_id) / "meta.json"
        if not path.exists():
            return None
        return StoryMeta.model_validate(self._read_json(path))

    @_blocking
    def set_active_story(self, story_id: str) -> None:
        if not (self._story_dir(story_id) / "meta.json").exists():
            raise StoryNotFoundError(story_id)
        self._write_json(self.root / "active.json", {"story_id": story_id})

    @_blocking
    def get_active_story(self) -> str | None:
        path = self.root / "active.json"
        if not path.exists():
            return None
        return self._read_json(path).get("story_id")

    # ────────────────────────────────────────────
    # 租约
    # ────────────────────────────────────────────

    @staticmethod
    def _lease_expiry(content: str) -> float:
        try:
            return float(content.split()[0]) if content.strip() else 0.0
        except ValueError:
            return 0.0

    def _reclaim_stale_lease(self, path: Path, seen: str) -> bool:
        """移走内容仍为 seen 的过期租约文件。

        先把租约原子地改名到唯一的临时路径，再核对内容：内容不同说明
        别的进程已经重新拿到租约，把它放回原处并返回 False。
        """
        grave = path.with_name(f"{path.name}.{uuid.uuid4().hex}.stale")
        try:
            os.rename(path, grave)
        except FileNotFoundError:
            # 已被其他进程清理
            return True
        try:
            if grave.read_text(encoding="utf-8") == seen:
                return True
            try:
                os.link(grave, path)
            except FileExistsError:
                logger.warning("租约在回收过程中被重新创建: %s", path.name)
            return False
        finally:
            grave.unlink(missing_ok=True)

    @_blocking
    def acquire_lease(self, key: str, ttl_seconds: float) -> bool:
        path = self._lease_path(key)
        # 内容带唯一令牌，回收时据此区分新旧租约；写完整后再用 link 原子发布
        token = uuid.uuid4().hex
        tmp = path.with_name(f"{path.name}.{token}.tmp")
        tmp.write_text(f"{time.time() + ttl_seconds} {token}", encoding="utf-8")
        try:
            for _ in range(3):
                try:
                    os.link(tmp, path)
                    return True
                except FileExistsError:
                    pass
                try:
                    seen = path.read_text(encoding="utf-8")
                except FileNotFoundError:
                    continue
                if self._lease_expiry(seen) > time.time():
                    return False
                if not self._reclaim_stale_lease(path, seen):
                    return False
            return False
        finally:
            tmp.unlink(missing_ok=True)

    @_blocking
    def release_lease(self, key: str) -> None:
        self._lease_path(key).unlink(missing_ok=True)
