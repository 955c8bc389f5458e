"""提示词组装：把世界配置、权威摘要、上一章结尾与大场面判定编译成一条生成请求。

段落按优先级排列：
  (a) 世界身份规则（附边界规则、动作风格、实体引入策略、长线指导）+ 故事进度
  (b) 动作密度
  (c) 反注水
  (d) 多日大场面硬性约束（仅当判定为重大时）
  (e) 输出格式
纯函数式组装，无副作用。
"""

from __future__ import annotations

import logging

from daytale.config.settings import PipelineConfig
from daytale.config.worlds import EntityLevel, EntityPolicy, WorldConfig
from daytale.models.bundle import SetPieceVerdict
from daytale.models.story import StoryEntry, StoryState
from daytale.prompts import format_prompt, load_prompt

logger = logging.getLogger(__name__)

_CHARACTER_POLICY: dict[EntityLevel, str] = {
    "forbidden": "新命名角色：禁止引入，故事围绕现有角色展开",
    "limited": "新命名角色：有限引入，一次最多一个，优先使用现有角色",
    "allowed": "新命名角色：允许引入，但要适度并服务于情节",
}

_PLACE_POLICY: dict[EntityLevel, str] = {
    "forbidden": "新命名地点：禁止引入，使用现有地点或通用描述（如“古老的石桥”“森林深处”）",
    "limited": "新命名地点：有限引入，优先使用现有地点，新地点必须服务于情节",
    "allowed": "新命名地点：允许引入，但要适度并服务于情节",
}

_FINAL_ALLOWED = "读者已要求终章，本章可以为主线任务写下结局。"
_FINAL_FORBIDDEN = "主线任务不能在本章结束，不要写成结局。"


def render_entity_policy(policy: EntityPolicy) -> str:
    """把实体引入策略渲染为自然语言规则。"""
    rules = [
        _CHARACTER_POLICY[policy.new_named_characters],
        _PLACE_POLICY[policy.new_named_places],
    ]
    return "实体引入规则：\n" + "\n".join(f"- {rule}" for rule in rules)


def render_world_snippet(world: WorldConfig) -> str:
    """世界身份规则，按需附加边界、动作风格、实体策略与长线指导。"""
    parts = [world.prompt_snippet.strip()]
    if world.boundary_rules.strip():
        parts.append(world.boundary_rules.strip())
    if world.action_style.strip():
        parts.append(world.action_style.strip())
    if world.entity_policy is not None:
        parts.append(render_entity_policy(world.entity_policy))
    if world.long_arc.strip():
        parts.append(f"长线走向：\n{world.long_arc.strip()}")
    return "\n\n".join(parts)


class PromptComposer:
    """章节包请求与摘要回放请求的组装器。"""

    def __init__(self, config: PipelineConfig | None = None):
        self.config = config or PipelineConfig()

    # ── 系统指令 ──

    def chapter_system_instruction(self) -> str:
        return format_prompt(
            "chapter_system",
            chapter_min_chars=self.config.chapter_min_chars,
            chapter_max_chars=self.config.chapter_max_chars,
        )

    def summary_system_instruction(self) -> str:
        return load_prompt("summary_system")

    # ── 章节包请求 ──

    def compose(
        self,
        state: StoryState,
        world: WorldConfig,
        user_event: str,
        prior_chapter_tail: str | None,
        verdict: SetPieceVerdict,
        allow_final: bool = False,
        day: int | None = None,
    ) -> str:
        """组装章节包生成请求。

        Args:
            state: 当前故事状态（摘要取自 state.summary）
            world: 世界配置
            user_event: 今日事件
            prior_chapter_tail: 上一章正文（只取结尾若干字符），没有时为 None
            verdict: 大场面判定
            allow_final: 是否允许写终章
            day: 目标天数，默认 state.day + 1

        Returns:
            完整的请求文本
        """
        cfg = self.config
        target_day = day if day is not None else state.day + 1
        principal_a, principal_b = world.principals

        tail_block = ""
        if prior_chapter_tail and prior_chapter_tail.strip():
            tail = prior_chapter_tail.strip()[-cfg.prior_tail_chars :]
            tail_block = f"\n\n上一章结尾（仅供衔接，保持简短）：\n{tail}"

        sections = [
            f"# 世界设定\n\n{render_world_snippet(world)}",
            format_prompt(
                "chapter_context",
                summary=state.summary.strip() or world.initial_summary,
                day=target_day,
                user_event=user_event.strip(),
                prior_tail_block=tail_block,
                final_policy=_FINAL_ALLOWED if allow_final else _FINAL_FORBIDDEN,
            ),
            format_prompt(
                "chapter_action_density",
                min_action_beats=cfg.min_action_beats,
                principal_a=principal_a.name,
                signature_a=principal_a.signature_action,
                principal_b=principal_b.name,
                signature_b=principal_b.signature_action,
            ),
            format_prompt("chapter_anti_filler", min_action_beats=cfg.min_action_beats),
            self._set_piece_section(world, verdict),
            format_prompt(
                "chapter_output_format",
                min_keywords=cfg.min_keywords,
                max_keywords=cfg.max_keywords,
                keyword_max_chars=cfg.keyword_max_chars,
                title_min_chars=cfg.title_min_chars,
                title_max_chars=cfg.title_max_chars,
                chapter_min_chars=cfg.chapter_min_chars,
                chapter_max_chars=cfg.chapter_max_chars,
                summary_max_sentences=cfg.summary_max_sentences,
                suggestion_count=cfg.suggestion_count,
            ),
        ]
        prompt = "\n\n".join(sections)
        logger.debug(
            "章节请求已组装: world=%s day=%d major=%s len=%d",
            world.id, target_day, verdict.is_major, len(prompt),
        )
        return prompt

    def _set_piece_section(self, world: WorldConfig, verdict: SetPieceVerdict) -> str:
        if not verdict.is_major:
            return load_prompt("chapter_minor_day")
        guidance_block = ""
        if world.set_piece_guidance:
            lines = "\n".join(f"- {g}" for g in world.set_piece_guidance)
            guidance_block = f"\n\n本世界的大场面分阶段指导：\n{lines}"
        return format_prompt(
            "chapter_set_piece",
            set_piece_type=verdict.type,
            matched_keywords="、".join(sorted(verdict.matched_keywords)) or "无",
            guidance_block=guidance_block,
        )

    # ── 摘要回放请求 ──

    @staticmethod
    def replay_entries(entries: list[StoryEntry], up_to_day: int) -> list[StoryEntry]:
        """回放范围：第 up_to_day 天之前的全部条目，按天升序。"""
        return sorted((e for e in entries if e.day < up_to_day), key=lambda e: e.day)

    def compose_summary_replay(self, entries: list[StoryEntry], up_to_day: int) -> str:
        """组装只做压缩的摘要请求，每条正文截断到固定长度。"""
        limit = self.config.replay_entry_chars
        blocks = [
            f"第{e.day}天：{e.user_event}\n{e.chapter_text[:limit]}"
            for e in self.replay_entries(entries, up_to_day)
        ]
        return format_prompt(
            "summary_replay",
            last_day=up_to_day - 1,
            entries="\n\n".join(blocks),
        )
