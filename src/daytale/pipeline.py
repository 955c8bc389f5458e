"""章节管线：GenerateNext 与 RewriteLatest 两个入口。

对调用方可见的错误只有 GenerationError、PersistenceError 与 PolicyViolation；
生成内容的格式问题全部在图内部由修复引擎吸收。
"""

from __future__ import annotations

import contextlib
import logging
import time
import uuid
from typing import AsyncIterator

from pydantic import BaseModel, Field

from daytale.agents.composer import PromptComposer
from daytale.config.settings import PipelineConfig
from daytale.config.worlds import WorldConfig, WorldRegistry, default_worlds
from daytale.engine.repair import RepairEngine
from daytale.engine.text import compress_summary
from daytale.engine.validator import BundleValidator
from daytale.errors import PersistenceError, PolicyViolation, StoryNotFoundError
from daytale.graph.chapter_graph import compile_chapter_graph
from daytale.llm.client import CallMeta, GenerationClient, new_request_id
from daytale.models.bundle import ChapterBundle, SetPieceVerdict
from daytale.models.story import StoryEntry, StoryMeta, StoryState
from daytale.state.chapter_state import ChapterGraphState
from daytale.storage.base import StoryStore, lease_key

logger = logging.getLogger(__name__)

ROUTE_GENERATE = "generate_next"
ROUTE_REWRITE = "rewrite_latest"


def new_story_id() -> str:
    return f"s_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class ChapterResult(BaseModel):
    """一次成功的生成或重写。"""

    story_id: str
    day: int
    revision: int
    entry: StoryEntry
    bundle: ChapterBundle
    verdict: SetPieceVerdict
    summary: str = Field(description="写回状态的权威摘要")
    repaired_fields: list[str] = Field(default_factory=list, description="被修复引擎替换的字段")


class ChapterPipeline:
    """编排 分类 → 组装 → 生成 → 校验 → 修复，并负责读写故事状态。"""

    def __init__(
        self,
        store: StoryStore,
        chapter_client: GenerationClient,
        summary_client: GenerationClient | None = None,
        worlds: WorldRegistry | None = None,
        config: PipelineConfig | None = None,
    ):
        self.store = store
        self.chapter_client = chapter_client
        self.summary_client = summary_client or chapter_client
        self.worlds = worlds or default_worlds()
        self.config = config or PipelineConfig()
        self.composer = PromptComposer(self.config)
        self.graph = compile_chapter_graph(
            chapter_client,
            config=self.config,
            composer=self.composer,
            validator=BundleValidator(self.config),
            repair_engine=RepairEngine(self.config),
        )

    # ────────────────────────────────────────────
    # 多故事簿记
    # ────────────────────────────────────────────

    async def create_story(self, world_id: str, story_id: str | None = None) -> StoryMeta:
        """创建新故事（day=0，摘要为世界初始摘要）并设为活跃故事。"""
        world = self._require_world(world_id)
        story_id = story_id or new_story_id()
        meta = await self.store.create_story(story_id, world.id, world.initial_summary)
        await self.store.set_active_story(story_id)
        logger.info("✨ 新故事 %s (world=%s)", story_id, world.id)
        return meta

    async def continue_story(self, story_id: str) -> StoryState:
        """把已有故事设为活跃故事并返回其状态。"""
        if await self.store.get_story_meta(story_id) is None:
            raise StoryNotFoundError(story_id)
        await self.store.set_active_story(story_id)
        return await self.store.load_state(story_id)

    # ────────────────────────────────────────────
    # GenerateNext
    # ────────────────────────────────────────────

    async def generate_next(
        self,
        story_id: str,
        user_event: str,
        allow_final: bool = False,
        request_id: str | None = None,
    ) -> ChapterResult:
        """生成下一天的章节：day' = day + 1，revision = 1。"""
        event = self._check_event(user_event)
        request_id = request_id or new_request_id()

        async with self._story_lease(story_id):
            state = await self.store.load_state(story_id)
            world = self._world_for(state)
            new_day = state.day + 1

            tail = None
            if state.day > 0:
                latest = await self.store.get_entry_by_day(story_id, state.day)
                if latest is not None:
                    tail = latest.chapter_text[-self.config.prior_tail_chars :]

            meta = CallMeta(
                operation="chapter_bundle",
                route=ROUTE_GENERATE,
                day=new_day,
                revision=1,
                request_id=request_id,
                story_id=story_id,
            )
            out = await self._run_graph(state, world, event, tail, allow_final, new_day, meta)
            bundle: ChapterBundle = out["bundle"]
            summary = compress_summary(bundle.next_summary, self.config.summary_max_sentences)

            entry = StoryEntry(
                day=new_day,
                user_event=event,
                chapter_text=bundle.chapter,
                title=bundle.title,
                anchors=bundle.anchors,
                suggestions=bundle.suggestions,
                event_keywords=bundle.event_keywords,
                revision=1,
            )
            await self.store.save_entry(story_id, entry)
            await self.store.save_state(
                story_id, state.model_copy(update={"day": new_day, "summary": summary})
            )

        logger.info("📖 第%d天《%s》已生成 (story=%s)", new_day, bundle.title, story_id)
        return ChapterResult(
            story_id=story_id,
            day=new_day,
            revision=1,
            entry=entry,
            bundle=bundle,
            verdict=out["verdict"],
            summary=summary,
            repaired_fields=out.get("repaired_fields", []),
        )

    # ────────────────────────────────────────────
    # RewriteLatest
    # ────────────────────────────────────────────

    async def rewrite_latest(
        self,
        story_id: str,
        new_event: str,
        request_id: str | None = None,
    ) -> ChapterResult:
        """用新事件重写最近一天：day 不变，revision + 1，只更新摘要。"""
        event = self._check_event(new_event)
        request_id = request_id or new_request_id()

        async with self._story_lease(story_id):
            state = await self.store.load_state(story_id)
            if state.day == 0:
                raise PolicyViolation("故事尚未开始（第0天），没有可重写的章节")
            day = state.day

            latest = await self.store.get_entry_by_day(story_id, day)
            if latest is None:
                raise PersistenceError(f"状态不一致：第{day}天的条目不存在 (story={story_id})")
            revision = latest.revision + 1
            world = self._world_for(state)

            entries = await self.store.load_entries(story_id)
            replayed = await self._replay_summary(entries, day, world, story_id, request_id)

            tail = None
            previous = next((e for e in entries if e.day == day - 1), None)
            if previous is not None:
                tail = previous.chapter_text[-self.config.prior_tail_chars :]

            meta = CallMeta(
                operation="chapter_bundle",
                route=ROUTE_REWRITE,
                day=day,
                revision=revision,
                request_id=request_id,
                story_id=story_id,
            )
            replay_state = state.model_copy(update={"summary": replayed})
            out = await self._run_graph(replay_state, world, event, tail, False, day, meta)
            bundle: ChapterBundle = out["bundle"]
            summary = compress_summary(bundle.next_summary, self.config.summary_max_sentences)

            entry = await self.store.update_entry(
                story_id,
                day,
                {
                    "user_event": event,
                    "chapter_text": bundle.chapter,
                    "title": bundle.title,
                    "anchors": bundle.anchors,
                    "suggestions": bundle.suggestions,
                    "event_keywords": bundle.event_keywords,
                    "revision": revision,
                },
            )
            await self.store.save_state(story_id, state.model_copy(update={"summary": summary}))

        logger.info("🔁 第%d天已重写为 rev %d《%s》(story=%s)", day, revision, bundle.title, story_id)
        return ChapterResult(
            story_id=story_id,
            day=day,
            revision=revision,
            entry=entry,
            bundle=bundle,
            verdict=out["verdict"],
            summary=summary,
            repaired_fields=out.get("repaired_fields", []),
        )

    async def _replay_summary(
        self,
        entries: list[StoryEntry],
        up_to_day: int,
        world: WorldConfig,
        story_id: str,
        request_id: str,
    ) -> str:
        """回放第 up_to_day 天之前的条目，重新压缩出权威摘要。"""
        relevant = self.composer.replay_entries(entries, up_to_day)
        if up_to_day <= 1 or not relevant:
            return world.initial_summary

        prompt = self.composer.compose_summary_replay(relevant, up_to_day)
        meta = CallMeta(
            operation="rewrite_summary",
            route=ROUTE_REWRITE,
            day=up_to_day,
            request_id=request_id,
            story_id=story_id,
        )
        text = await self.summary_client.invoke(
            prompt, meta, system_instruction=self.composer.summary_system_instruction()
        )
        return compress_summary(text, self.config.summary_max_sentences)

    # ────────────────────────────────────────────
    # 内部
    # ────────────────────────────────────────────

    async def _run_graph(
        self,
        state: StoryState,
        world: WorldConfig,
        event: str,
        tail: str | None,
        allow_final: bool,
        target_day: int,
        meta: CallMeta,
    ) -> ChapterGraphState:
        initial: ChapterGraphState = {
            "story_state": state,
            "world": world,
            "user_event": event,
            "prior_chapter_tail": tail,
            "allow_final": allow_final,
            "target_day": target_day,
            "meta": meta,
        }
        return await self.graph.ainvoke(initial)

    def _check_event(self, user_event: str) -> str:
        event = (user_event or "").strip()
        if not event:
            raise PolicyViolation("事件不能为空")
        if len(event) > self.config.max_event_chars:
            raise PolicyViolation(f"事件过长（最多 {self.config.max_event_chars} 字）")
        return event

    def _require_world(self, world_id: str | None) -> WorldConfig:
        try:
            return self.worlds.require(world_id)
        except KeyError as e:
            raise PolicyViolation(f"未知世界: {world_id}") from e

    def _world_for(self, state: StoryState) -> WorldConfig:
        world = self.worlds.get(state.world_id)
        if world is None:
            logger.warning("故事 %s 的世界 %r 未注册，使用默认世界", state.story_id, state.world_id)
            world = self.worlds.require(None)
        return world

    @contextlib.asynccontextmanager
    async def _story_lease(self, story_id: str) -> AsyncIterator[None]:
        """单故事租约：已被占用时拒绝，退出时总是释放。"""
        if not self.config.use_story_lease:
            yield
            return
        key = lease_key(story_id)
        if not await self.store.acquire_lease(key, self.config.lease_ttl_seconds):
            raise PolicyViolation(f"故事 {story_id} 正在生成中，请稍后再试")
        try:
            yield
        finally:
            await self.store.release_lease(key)
