"""章节包校验器：解析原始文本并逐字段检查输出契约。

返回字段级问题列表而不是单一布尔值，修复引擎据此只修复失败的字段。
"""

from __future__ import annotations

import logging
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, StringConstraints, TypeAdapter, ValidationError

from daytale.agents.utils import extract_json_object
from daytale.config.settings import PipelineConfig
from daytale.errors import ParseError
from daytale.models.bundle import (
    AnchorKey,
    ChapterBundle,
    IssueKind,
    ValidationIssue,
    ValidationResult,
)
from daytale.engine.text import (
    chapter_char_count,
    char_count,
    clean_title,
    split_sentences,
    title_contains_keyword,
)

logger = logging.getLogger(__name__)

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class _WireAnchors(BaseModel):
    model_config = ConfigDict(extra="ignore")

    A: NonEmptyStr
    B: NonEmptyStr
    C: NonEmptyStr


class _WireSuggestion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    text: NonEmptyStr
    usesAnchors: list[AnchorKey]


# 线上字段名 → 单字段类型校验器
FIELD_ADAPTERS: dict[str, TypeAdapter] = {
    "event_keywords": TypeAdapter(list[NonEmptyStr]),
    "title": TypeAdapter(NonEmptyStr),
    "chapter": TypeAdapter(NonEmptyStr),
    "next_story_state_summary": TypeAdapter(NonEmptyStr),
    "anchors": TypeAdapter(_WireAnchors),
    "tomorrow_suggestions": TypeAdapter(list[_WireSuggestion]),
}

REQUIRED_FIELDS: tuple[str, ...] = tuple(FIELD_ADAPTERS)


def _issue_kind(error_type: str) -> IssueKind:
    """将 pydantic 错误类型映射为问题类别。"""
    if error_type == "missing":
        return "missing"
    if error_type in {"string_too_short", "string_too_long"}:
        return "wrong_length"
    if error_type in {"too_short", "too_long"}:
        return "cardinality"
    if error_type == "literal_error":
        return "invalid_value"
    if error_type.endswith("_type") or error_type == "model_attributes_type":
        return "wrong_type"
    return "invalid_value"


class BundleValidator:
    """把原始生成文本校验为 ChapterBundle。"""

    def __init__(self, config: PipelineConfig | None = None):
        self.config = config or PipelineConfig()

    def validate(self, raw_text: str, user_event: str | None = None) -> ValidationResult:
        """校验原始文本。给出 user_event 时还要求每个关键词是事件原文的字面子串。"""
        try:
            parsed = extract_json_object(raw_text)
        except ParseError as e:
            logger.warning("章节包解析失败，全部字段交给修复引擎: %s", e)
            return ValidationResult(
                parsed=None,
                issues=[ValidationIssue(field="*", kind="parse", detail=str(e))],
            )

        issues: list[ValidationIssue] = []
        clean: dict[str, Any] = {}

        for name, adapter in FIELD_ADAPTERS.items():
            if name not in parsed or parsed[name] is None:
                issues.append(ValidationIssue(field=name, kind="missing", detail="字段缺失"))
                continue
            try:
                clean[name] = adapter.validate_python(parsed[name])
            except ValidationError as e:
                for err in e.errors():
                    loc = ".".join(str(p) for p in err["loc"])
                    issues.append(
                        ValidationIssue(
                            field=name,
                            kind=_issue_kind(err["type"]),
                            detail=f"{loc}: {err['msg']}" if loc else err["msg"],
                        )
                    )

        issues.extend(self._check_contract(clean, user_event))
        warnings = self._check_advisories(clean)

        failed = {i.field for i in issues}
        bundle = None
        if not failed:
            bundle = ChapterBundle(
                event_keywords=clean["event_keywords"],
                title=clean_title(clean["title"]),
                chapter=clean["chapter"],
                next_summary=clean["next_story_state_summary"],
                anchors=clean["anchors"].model_dump(),
                suggestions=[
                    {"text": s.text, "uses_anchors": list(dict.fromkeys(s.usesAnchors))}
                    for s in clean["tomorrow_suggestions"]
                ],
            )
        else:
            logger.info("章节包校验未通过字段: %s", ", ".join(sorted(failed)))

        return ValidationResult(bundle=bundle, parsed=parsed, issues=issues, warnings=warnings)

    # ────────────────────────────────────────────
    # 契约检查（类型正确之后）
    # ────────────────────────────────────────────

    def _check_contract(
        self, clean: dict[str, Any], user_event: str | None = None
    ) -> list[ValidationIssue]:
        cfg = self.config
        issues: list[ValidationIssue] = []

        keywords_ok = False
        keywords = clean.get("event_keywords")
        if keywords is not None:
            if not cfg.min_keywords <= len(keywords) <= cfg.max_keywords:
                issues.append(
                    ValidationIssue(
                        field="event_keywords",
                        kind="cardinality",
                        detail=f"需要 {cfg.min_keywords}-{cfg.max_keywords} 个，实际 {len(keywords)}",
                    )
                )
            elif any(char_count(kw) > cfg.keyword_max_chars for kw in keywords):
                issues.append(
                    ValidationIssue(
                        field="event_keywords",
                        kind="wrong_length",
                        detail=f"关键词超过 {cfg.keyword_max_chars} 个字符",
                    )
                )
            elif user_event is not None and any(kw not in user_event for kw in keywords):
                issues.append(
                    ValidationIssue(
                        field="event_keywords",
                        kind="constraint",
                        detail="关键词不是事件原文的子串",
                    )
                )
            else:
                keywords_ok = True

        title = clean.get("title")
        if title is not None:
            title = clean_title(title)
            length = char_count(title)
            if not cfg.title_min_chars <= length <= cfg.title_max_chars:
                issues.append(
                    ValidationIssue(
                        field="title",
                        kind="wrong_length",
                        detail=f"标题 {length} 字，要求 {cfg.title_min_chars}-{cfg.title_max_chars}",
                    )
                )
            elif keywords_ok and not title_contains_keyword(title, keywords):
                issues.append(
                    ValidationIssue(
                        field="title", kind="constraint", detail="标题未包含任何事件关键词"
                    )
                )

        suggestions = clean.get("tomorrow_suggestions")
        if suggestions is not None:
            if len(suggestions) != cfg.suggestion_count:
                issues.append(
                    ValidationIssue(
                        field="tomorrow_suggestions",
                        kind="cardinality",
                        detail=f"需要 {cfg.suggestion_count} 条，实际 {len(suggestions)}",
                    )
                )
            if any(not s.usesAnchors for s in suggestions):
                issues.append(
                    ValidationIssue(
                        field="tomorrow_suggestions",
                        kind="constraint",
                        detail="存在未引用任何锚点的建议",
                    )
                )

        summary = clean.get("next_story_state_summary")
        if summary is not None:
            count = len(split_sentences(summary))
            if count > cfg.summary_max_sentences:
                issues.append(
                    ValidationIssue(
                        field="next_story_state_summary",
                        kind="constraint",
                        detail=f"摘要 {count} 句，超过 {cfg.summary_max_sentences} 句",
                    )
                )

        return issues

    def _check_advisories(self, clean: dict[str, Any]) -> list[ValidationIssue]:
        """正文长度只记录，不拒绝。"""
        cfg = self.config
        chapter = clean.get("chapter")
        if chapter is None:
            return []
        count = chapter_char_count(chapter)
        if cfg.chapter_min_chars <= count <= cfg.chapter_max_chars:
            return []
        return [
            ValidationIssue(
                field="chapter",
                kind="wrong_length",
                detail=f"正文 {count} 字，目标 {cfg.chapter_min_chars}-{cfg.chapter_max_chars}",
            )
        ]
