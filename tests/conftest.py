"""测试公用夹具：章节包样例、脚本化模型与装配好的管线。"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest
from langchain_core.messages import AIMessage

from daytale.config.settings import PipelineConfig
from daytale.config.worlds import default_worlds
from daytale.llm.client import GenerationClient
from daytale.pipeline import ChapterPipeline
from daytale.storage.memory import InMemoryStoryStore
from daytale.utils.call_log import MemoryCallLog

DRAGON_EVENT = "一二和布布在石桥下与巨龙搏斗"


def make_bundle(**overrides: Any) -> dict[str, Any]:
    """一个完全合规的章节包（线上字段名）。"""
    bundle: dict[str, Any] = {
        "event_keywords": ["石桥", "巨龙搏斗"],
        "title": "石桥下的巨龙搏斗",
        "chapter": "布布举盾挡住龙焰。" * 80,
        "next_story_state_summary": "一二与布布在石桥下遭遇巨龙。战斗仍未结束。",
        "anchors": {"A": "断裂的石桥", "B": "巨龙守护的东西", "C": "布布右臂麻木"},
        "tomorrow_suggestions": [
            {"text": "一二在断裂的石桥下布置光之屏障", "usesAnchors": ["A"]},
            {"text": "布布追查巨龙守护的东西", "usesAnchors": ["B"]},
            {"text": "顾及布布右臂麻木，两人轮流守夜", "usesAnchors": ["C"]},
            {"text": "在石桥边发现龙鳞与古老符文", "usesAnchors": ["A", "B"]},
            {"text": "布布忍着右臂麻木，在石桥下引开巨龙", "usesAnchors": ["A", "B", "C"]},
        ],
    }
    bundle.update(overrides)
    return bundle


def bundle_text(**overrides: Any) -> str:
    return json.dumps(make_bundle(**overrides), ensure_ascii=False)


class ScriptedModel:
    """按顺序返回预设响应并记录每次收到的消息。"""

    def __init__(self, responses: list[str], usage: dict[str, int] | None = None):
        self.responses = list(responses)
        self.usage = usage
        self.calls: list[list[Any]] = []

    async def ainvoke(self, messages: list[Any], **kwargs: Any) -> AIMessage:
        self.calls.append(messages)
        text = self.responses[min(len(self.calls) - 1, len(self.responses) - 1)]
        if self.usage:
            return AIMessage(content=text, usage_metadata=self.usage)
        return AIMessage(content=text)

    @property
    def last_prompt(self) -> str:
        return self.calls[-1][-1].content


class FailingModel:
    """每次调用都抛出传输错误。"""

    def __init__(self, exc: Exception | None = None):
        self.exc = exc or ConnectionError("connection reset")
        self.calls = 0

    async def ainvoke(self, messages: list[Any], **kwargs: Any) -> AIMessage:
        self.calls += 1
        raise self.exc


class SlowModel:
    async def ainvoke(self, messages: list[Any], **kwargs: Any) -> AIMessage:
        await asyncio.sleep(1)
        return AIMessage(content="{}")


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()


@pytest.fixture
def worlds():
    return default_worlds()


@pytest.fixture
def world(worlds):
    return worlds.require("middle_earth")


@pytest.fixture
def store() -> InMemoryStoryStore:
    return InMemoryStoryStore()


@pytest.fixture
def call_log() -> MemoryCallLog:
    return MemoryCallLog()


@pytest.fixture
def make_pipeline(store, worlds, config, call_log):
    """按给定的章节/摘要模型装配管线。"""

    def _make(chapter_model: Any, summary_model: Any | None = None) -> ChapterPipeline:
        chapter_client = GenerationClient(chapter_model, model_name="fake-chapter", sink=call_log)
        summary_client = None
        if summary_model is not None:
            summary_client = GenerationClient(summary_model, model_name="fake-summary", sink=call_log)
        return ChapterPipeline(
            store,
            chapter_client,
            summary_client=summary_client,
            worlds=worlds,
            config=config,
        )

    return _make
