"""确定性修复引擎：只替换校验失败的字段，保证返回完整合规的章节包。

任何输入（包括完全无法解析的输出）都会得到一个满足输出契约的 ChapterBundle，
本模块不抛出异常。正文缺失时只能生成占位文本，无法凭空补全叙事内容。
"""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, Field

from daytale.config.settings import PipelineConfig
from daytale.config.worlds import WorldConfig
from daytale.models.bundle import (
    ANCHOR_KEYS,
    Anchors,
    ChapterBundle,
    SetPieceVerdict,
    Suggestion,
    ValidationIssue,
)
from daytale.engine.text import (
    char_count,
    clean_title,
    compress_summary,
    title_contains_keyword,
)

logger = logging.getLogger(__name__)

# 兜底锚点：地点 / 线索 / 限制
PLACEHOLDER_ANCHORS: dict[str, str] = {
    "A": "旅途中的发现",
    "B": "未解的谜团",
    "C": "角色的状态",
}

FALLBACK_KEYWORD = "事件"

_KEYWORD_SPLIT_RE = re.compile(r"[，。、,.;；！？!?\s]+")
_ANCHOR_SENTENCE_RE = re.compile(r"[。！？\n]")
_ANCHOR_PHRASE_RE = re.compile(
    r"[\u4e00-\u9fff]{2,6}(?:的|之)[\u4e00-\u9fff]+|[\u4e00-\u9fff]{3,8}"
)

_SET_PIECE_LABELS: dict[str, str] = {
    "boss_fight": "强敌之战",
    "escape": "逃亡",
    "siege": "围攻",
    "disaster": "灾变",
    "unknown": "危机",
}


class RepairContext(BaseModel):
    """修复时可用的上下文。"""

    user_event: str = Field(description="今日事件原文")
    previous_summary: str = Field(default="", description="本次生成前的权威摘要")
    world: WorldConfig = Field(description="所属世界")
    verdict: SetPieceVerdict = Field(default_factory=SetPieceVerdict)
    request_id: str = Field(default="", description="请求 ID（用于日志关联）")
    day: int = Field(default=0, description="目标天数")


class RepairEngine:
    """按字段修复章节包。"""

    def __init__(self, config: PipelineConfig | None = None):
        self.config = config or PipelineConfig()

    def repair(
        self,
        parsed: dict[str, Any] | None,
        issues: list[ValidationIssue],
        context: RepairContext,
    ) -> ChapterBundle:
        """修复失败字段并返回完整章节包。

        Args:
            parsed: 校验器提取出的 JSON 对象；解析失败时为 None
            issues: 校验器给出的字段级问题
            context: 事件、摘要、世界与大场面判定

        Returns:
            满足全部输出契约的 ChapterBundle
        """
        data = parsed if isinstance(parsed, dict) else {}
        failed = {i.field for i in issues}
        if parsed is None or "*" in failed:
            failed = {
                "event_keywords", "title", "chapter",
                "next_story_state_summary", "anchors", "tomorrow_suggestions",
            }
        repaired: list[str] = []

        # 关键词
        if "event_keywords" in failed:
            keywords = self.repair_keywords(data.get("event_keywords"), context)
            repaired.append("event_keywords")
        else:
            keywords = [str(kw).strip() for kw in data["event_keywords"]]

        # 正文
        if "chapter" in failed:
            chapter = self.placeholder_chapter(context)
            repaired.append("chapter")
        else:
            chapter = str(data["chapter"]).strip()

        # 锚点
        if "anchors" in failed:
            source = context.user_event if "chapter" in repaired else chapter
            anchors = self.repair_anchors(data.get("anchors"), source)
            repaired.append("anchors")
        else:
            anchors = Anchors(**{k: str(data["anchors"][k]).strip() for k in ANCHOR_KEYS})

        # 标题：关键词变化后必须重新核对
        if "title" in failed or "event_keywords" in repaired:
            raw_title = data.get("title") if isinstance(data.get("title"), str) else ""
            title = self.repair_title(raw_title, keywords, anchors.A)
            if title != clean_title(raw_title):
                repaired.append("title")
        else:
            title = clean_title(str(data["title"]))

        # 摘要
        if "next_story_state_summary" in failed:
            summary = self.repair_summary(data.get("next_story_state_summary"), context)
            repaired.append("next_story_state_summary")
        else:
            summary = str(data["next_story_state_summary"]).strip()

        # 建议
        if "tomorrow_suggestions" in failed:
            suggestions = self.repair_suggestions(
                data.get("tomorrow_suggestions"), anchors, context
            )
            repaired.append("tomorrow_suggestions")
        else:
            suggestions = [
                Suggestion(
                    text=str(s["text"]).strip(),
                    uses_anchors=list(dict.fromkeys(s["usesAnchors"])),
                )
                for s in data["tomorrow_suggestions"]
            ]

        if repaired:
            logger.warning(
                "章节包字段已修复 request_id=%s day=%s fields=%s",
                context.request_id or "-",
                context.day,
                ",".join(repaired),
            )

        return ChapterBundle(
            event_keywords=keywords,
            title=title,
            chapter=chapter,
            next_summary=summary,
            anchors=anchors,
            suggestions=suggestions,
        )

    # ────────────────────────────────────────────
    # 单字段策略
    # ────────────────────────────────────────────

    def repair_keywords(self, raw: Any, context: RepairContext) -> list[str]:
        """沿用模型给出的、确实出现在事件原文中的关键词，不足时用事件切分结果补齐。"""
        cfg = self.config
        event = context.user_event
        keywords: list[str] = []
        if isinstance(raw, list):
            for item in raw:
                if isinstance(item, str) and item.strip() and item.strip() in event:
                    _append_unique(keywords, item.strip()[: cfg.keyword_max_chars])
        if len(keywords) >= cfg.min_keywords:
            return keywords[: cfg.max_keywords]
        for kw in self.derive_keywords(event, context.verdict):
            if len(keywords) >= cfg.min_keywords:
                break
            _append_unique(keywords, kw)
        return keywords

    def derive_keywords(self, event: str, verdict: SetPieceVerdict | None = None) -> list[str]:
        """从事件文本中切出 2-4 个字面片段。"""
        cfg = self.config
        event = event.strip()
        keywords: list[str] = []
        for part in _KEYWORD_SPLIT_RE.split(event):
            if part.strip():
                _append_unique(keywords, part.strip()[: cfg.keyword_max_chars])
            if len(keywords) >= cfg.max_keywords:
                break

        # 片段不足时用大场面命中词与事件前后两半补齐，仍保持为事件的子串
        if len(keywords) < cfg.min_keywords and verdict is not None:
            for kw in sorted(verdict.matched_keywords, key=lambda k: (event.find(k), k)):
                _append_unique(keywords, kw)
        if len(keywords) < cfg.min_keywords and len(event) >= 2:
            half = len(event) // 2
            _append_unique(keywords, event[:half][: cfg.keyword_max_chars])
            _append_unique(keywords, event[half:][: cfg.keyword_max_chars])
        for filler in (FALLBACK_KEYWORD, "今日"):
            if len(keywords) >= cfg.min_keywords:
                break
            _append_unique(keywords, filler)
        return keywords[: cfg.max_keywords]

    def repair_title(self, raw_title: str, keywords: list[str], anchor_a: str = "") -> str:
        """原标题合格则保留，否则依次尝试标题模板。"""
        cfg = self.config
        title = clean_title(raw_title or "")
        if (
            cfg.title_min_chars <= char_count(title) <= cfg.title_max_chars
            and title_contains_keyword(title, keywords)
        ):
            return title

        kw = keywords[0].strip() if keywords and keywords[0].strip() else FALLBACK_KEYWORD
        candidates = [f"《{kw}》"]
        if anchor_a.strip():
            candidates.append(f"《在{anchor_a.strip()}的{kw}》")
        candidates.append(f"《{kw}之日》")
        candidates.append(f"《{kw}的一天》")
        for candidate in candidates:
            if cfg.title_min_chars <= char_count(candidate) <= cfg.title_max_chars:
                return candidate
        return candidates[0]

    def repair_anchors(self, raw: Any, source_text: str) -> Anchors:
        """保留可用锚点，其余从文本结尾抽取，仍不足时使用占位短语。"""
        values: dict[str, str] = {}
        if isinstance(raw, dict):
            for key in ANCHOR_KEYS:
                value = raw.get(key)
                if isinstance(value, str) and value.strip():
                    values[key] = value.strip()

        missing = [k for k in ANCHOR_KEYS if k not in values]
        if missing:
            candidates = [
                c for c in self.extract_anchor_phrases(source_text) if c not in values.values()
            ]
            for key in missing:
                values[key] = candidates.pop(0) if candidates else PLACEHOLDER_ANCHORS[key]
        return Anchors(**values)

    def extract_anchor_phrases(self, text: str) -> list[str]:
        """从最后一句中抽取名词性短语。"""
        sentences = [s for s in _ANCHOR_SENTENCE_RE.split(text or "") if s.strip()]
        if not sentences:
            return []
        phrases: list[str] = []
        for match in _ANCHOR_PHRASE_RE.findall(sentences[-1]):
            _append_unique(phrases, match[: self.config.anchor_max_chars])
        return phrases

    def repair_summary(self, raw: Any, context: RepairContext) -> str:
        """只截断，不编造；缺失时沿用上一版权威摘要。"""
        if isinstance(raw, str) and raw.strip():
            text = raw
        elif context.previous_summary.strip():
            text = context.previous_summary
        else:
            text = context.world.initial_summary
        return compress_summary(text, self.config.summary_max_sentences)

    def repair_suggestions(
        self, raw: Any, anchors: Anchors, context: RepairContext
    ) -> list[Suggestion]:
        """过滤出有效建议，不足 5 条时用锚点模板补齐。"""
        count = self.config.suggestion_count
        kept: list[Suggestion] = []
        if isinstance(raw, list):
            for item in raw:
                suggestion = _coerce_suggestion(item)
                if suggestion is not None:
                    kept.append(suggestion)
                if len(kept) >= count:
                    break
        if len(kept) < count:
            fill = self.fallback_suggestions(anchors, context)
            kept.extend(fill[: count - len(kept)])
        return kept

    def fallback_suggestions(self, anchors: Anchors, context: RepairContext) -> list[Suggestion]:
        p0, p1 = context.world.principal_names
        a, b, c = anchors.A, anchors.B, anchors.C
        fill: list[Suggestion] = []
        if context.verdict.is_major:
            label = _SET_PIECE_LABELS.get(context.verdict.type, "危机")
            fill += [
                Suggestion(
                    text=f"{p0}和{p1}没有撤离，在{b}的压力下重整阵型，继续应对这场{label}",
                    uses_anchors=["B"],
                ),
                Suggestion(
                    text=f"{p1}顶着{c}再次顶上前线，{p0}寻找扭转{label}的破绽",
                    uses_anchors=["C"],
                ),
            ]
        fill += [
            Suggestion(text=f"{p0}在{a}附近侦察，寻找隐藏的入口或标记", uses_anchors=["A"]),
            Suggestion(text=f"{p1}追踪{b}的线索，试图解开谜团", uses_anchors=["B"]),
            Suggestion(text=f"考虑到{c}，{p0}设法稳住局面并布下防护", uses_anchors=["C"]),
            Suggestion(text=f"在{a}，他们发现与{b}相关的新痕迹", uses_anchors=["A", "B"]),
            Suggestion(
                text=f"面对{c}，{p1}在{a}附近清理障碍，{p0}尝试修复{b}",
                uses_anchors=["A", "B", "C"],
            ),
        ]
        return fill

    def placeholder_chapter(self, context: RepairContext) -> str:
        p0, p1 = context.world.principal_names
        return f"{p0}和{p1}继续他们的旅程。{context.user_event.strip()}"


def _append_unique(items: list[str], value: str) -> None:
    if value and value not in items:
        items.append(value)


def _coerce_suggestion(item: Any) -> Suggestion | None:
    """单条建议合法则返回 Suggestion，否则返回 None。"""
    if not isinstance(item, dict):
        return None
    text = item.get("text")
    uses = item.get("usesAnchors", item.get("uses_anchors"))
    if not isinstance(text, str) or not text.strip():
        return None
    if not isinstance(uses, list) or not uses:
        return None
    if not all(isinstance(u, str) and u in ANCHOR_KEYS for u in uses):
        return None
    return Suggestion(text=text.strip(), uses_anchors=list(dict.fromkeys(uses)))
