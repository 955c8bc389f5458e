"""故事状态与逐日条目数据模型。"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, Field

from daytale.models.bundle import Anchors, Suggestion


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StoryState(BaseModel):
    """单个故事的权威状态。只由管线在生成/重写成功后修改。"""

    story_id: str = Field(description="故事唯一标识")
    day: int = Field(default=0, ge=0, description="已生成到第几天（0 表示尚未开始）")
    summary: str = Field(default="", description="2-3 句权威摘要")
    world_id: str = Field(default="", description="所属世界")


class StoryMeta(BaseModel):
    """多故事簿记信息。"""

    story_id: str = Field(description="故事唯一标识")
    world_id: str = Field(description="所属世界")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class StoryEntry(BaseModel):
    """某一天的章节条目。生成时创建，重写时原地更新并递增修订号。"""

    day: int = Field(ge=1, description="第几天")
    user_event: str = Field(description="用户提交的今日事件")
    chapter_text: str = Field(description="章节正文")
    title: str = Field(description="章节标题")
    anchors: Anchors = Field(description="三个锚点")
    suggestions: list[Suggestion] = Field(description="五条明日建议")
    event_keywords: list[str] = Field(description="2-4 个事件关键词")
    revision: int = Field(default=1, ge=1, description="修订号，只在重写同一天时递增")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
