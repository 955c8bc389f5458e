"""单次章节生成的图状态（LangGraph StateGraph 状态）。"""

from __future__ import annotations

from typing_extensions import TypedDict

from daytale.config.worlds import WorldConfig
from daytale.llm.client import CallMeta
from daytale.models.bundle import ChapterBundle, SetPieceVerdict, ValidationResult
from daytale.models.story import StoryState


class ChapterGraphState(TypedDict, total=False):
    """一次 分类 → 组装 → 生成 → 校验 → 修复 链路的状态。

    使用 total=False 使所有字段可选，便于在节点中做部分更新。
    """

    # ── 输入（由管线填入，节点只读）──
    story_state: StoryState
    world: WorldConfig
    user_event: str
    prior_chapter_tail: str | None
    allow_final: bool
    target_day: int
    meta: CallMeta

    # ── 中间结果 ──
    verdict: SetPieceVerdict
    prompt: str
    raw_text: str
    validation: ValidationResult

    # ── 输出 ──
    bundle: ChapterBundle
    repaired_fields: list[str]

    # ── 控制流 ──
    next_action: str
