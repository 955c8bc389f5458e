"""章节包、锚点、建议与大场面判定的数据模型。

ChapterBundle 既是请求模型输出的 JSON 形状，也是校验/修复后的结果契约。
JSON 别名与线上字段名一致（event_keywords / next_story_state_summary /
tomorrow_suggestions / usesAnchors）。
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

AnchorKey = Literal["A", "B", "C"]
ANCHOR_KEYS: tuple[str, ...] = ("A", "B", "C")

SetPieceType = Literal["boss_fight", "escape", "siege", "disaster", "unknown"]


class Anchors(BaseModel):
    """三个锚点：具体地点/物品、未解线索、角色状态/限制。"""

    A: str = Field(description="具体地点/物品")
    B: str = Field(description="未解决的线索/伏笔")
    C: str = Field(description="角色状态/限制")


class Suggestion(BaseModel):
    """一条明日事件建议。"""

    model_config = ConfigDict(populate_by_name=True)

    text: str = Field(description="建议文本")
    uses_anchors: list[AnchorKey] = Field(alias="usesAnchors", description="引用的锚点")


class ChapterBundle(BaseModel):
    """一次生成调用的完整结构化产出。"""

    model_config = ConfigDict(populate_by_name=True)

    event_keywords: list[str] = Field(description="从今日事件中提取的 2-4 个字面关键词")
    title: str = Field(description="章节标题，必须字面包含一个关键词")
    chapter: str = Field(description="章节正文")
    next_summary: str = Field(
        alias="next_story_state_summary", description="更新后的权威摘要（≤3 句）"
    )
    anchors: Anchors = Field(description="三个锚点")
    suggestions: list[Suggestion] = Field(
        alias="tomorrow_suggestions", description="恰好 5 条明日建议"
    )

    def to_wire(self) -> dict[str, Any]:
        """按线上字段名导出。"""
        return self.model_dump(by_alias=True)


class SetPieceVerdict(BaseModel):
    """今日事件是否属于多日大场面的确定性判定。"""

    model_config = ConfigDict(frozen=True)

    is_major: bool = False
    type: SetPieceType = "unknown"
    matched_keywords: frozenset[str] = frozenset()


IssueKind = Literal[
    "parse",
    "missing",
    "wrong_type",
    "wrong_length",
    "cardinality",
    "invalid_value",
    "constraint",
]


class ValidationIssue(BaseModel):
    """某个字段违反了某条约束。"""

    model_config = ConfigDict(frozen=True)

    field: str = Field(description="顶层字段名（线上名）")
    kind: IssueKind = Field(description="违反类型")
    detail: str = Field(default="", description="说明")


class ValidationResult(BaseModel):
    """校验结果：通过时带完整 bundle，否则带字段级问题列表。"""

    bundle: ChapterBundle | None = None
    parsed: dict[str, Any] | None = Field(
        default=None, description="从原始文本中提取出的 JSON 对象（若有）"
    )
    issues: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(
        default_factory=list, description="仅记录不拒绝的问题（如正文长度偏离目标）"
    )

    @property
    def ok(self) -> bool:
        return self.bundle is not None and not self.issues

    @property
    def failed_fields(self) -> set[str]:
        return {issue.field for issue in self.issues}
