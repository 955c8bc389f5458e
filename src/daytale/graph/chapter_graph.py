"""章节生成图：classify -> compose -> generate -> validate -> (repair)。

每个节点只依赖上一节点的输出，严格顺序执行，没有并行分支。
生成节点是唯一的挂起点；GenerationError 原样穿出图，由管线向调用方传播。
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from langgraph.graph import END, START, StateGraph

from daytale.agents.composer import PromptComposer
from daytale.config.settings import PipelineConfig
from daytale.engine.repair import RepairContext, RepairEngine
from daytale.engine.set_piece import classify
from daytale.engine.validator import REQUIRED_FIELDS, BundleValidator
from daytale.graph.routing import route_after_validate
from daytale.llm.client import GenerationClient
from daytale.state.chapter_state import ChapterGraphState

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────
# 节点
# ────────────────────────────────────────────


def create_classify_node() -> Callable[[ChapterGraphState], dict[str, Any]]:
    def classify_node(state: ChapterGraphState) -> dict[str, Any]:
        verdict = classify(state["user_event"])
        if verdict.is_major:
            logger.info(
                "🐉 大场面: type=%s 命中=%s",
                verdict.type, "、".join(sorted(verdict.matched_keywords)),
            )
        return {"verdict": verdict}

    return classify_node


def create_compose_node(composer: PromptComposer) -> Callable[[ChapterGraphState], dict[str, Any]]:
    def compose_node(state: ChapterGraphState) -> dict[str, Any]:
        prompt = composer.compose(
            state["story_state"],
            state["world"],
            state["user_event"],
            state.get("prior_chapter_tail"),
            state["verdict"],
            allow_final=state.get("allow_final", False),
            day=state.get("target_day"),
        )
        return {"prompt": prompt}

    return compose_node


def create_generate_node(
    client: GenerationClient, composer: PromptComposer
) -> Callable[[ChapterGraphState], Awaitable[dict[str, Any]]]:
    async def generate_node(state: ChapterGraphState) -> dict[str, Any]:
        raw_text = await client.invoke(
            state["prompt"],
            state.get("meta"),
            system_instruction=composer.chapter_system_instruction(),
        )
        return {"raw_text": raw_text}

    return generate_node


def create_validate_node(validator: BundleValidator) -> Callable[[ChapterGraphState], dict[str, Any]]:
    def validate_node(state: ChapterGraphState) -> dict[str, Any]:
        result = validator.validate(state.get("raw_text", ""), state.get("user_event"))
        for warning in result.warnings:
            logger.warning("章节包提示 [%s]: %s", warning.field, warning.detail)
        if result.ok:
            return {
                "validation": result,
                "bundle": result.bundle,
                "repaired_fields": [],
                "next_action": "done",
            }
        for issue in result.issues:
            logger.info("校验问题 [%s/%s]: %s", issue.field, issue.kind, issue.detail)
        return {"validation": result, "next_action": "repair"}

    return validate_node


def create_repair_node(engine: RepairEngine) -> Callable[[ChapterGraphState], dict[str, Any]]:
    def repair_node(state: ChapterGraphState) -> dict[str, Any]:
        result = state["validation"]
        meta = state.get("meta")
        context = RepairContext(
            user_event=state["user_event"],
            previous_summary=state["story_state"].summary,
            world=state["world"],
            verdict=state["verdict"],
            request_id=meta.request_id if meta else "",
            day=state.get("target_day", 0),
        )
        bundle = engine.repair(result.parsed, result.issues, context)
        failed = result.failed_fields
        fields = list(REQUIRED_FIELDS) if "*" in failed else sorted(failed)
        return {"bundle": bundle, "repaired_fields": fields, "next_action": "done"}

    return repair_node


# ────────────────────────────────────────────
# 图构建
# ────────────────────────────────────────────


def build_chapter_graph(
    client: GenerationClient,
    config: PipelineConfig | None = None,
    composer: PromptComposer | None = None,
    validator: BundleValidator | None = None,
    repair_engine: RepairEngine | None = None,
) -> StateGraph:
    """构建单章生成图。"""
    if config is None:
        config = PipelineConfig()
    composer = composer or PromptComposer(config)
    validator = validator or BundleValidator(config)
    repair_engine = repair_engine or RepairEngine(config)

    workflow = StateGraph(ChapterGraphState)

    workflow.add_node("classify", create_classify_node())
    workflow.add_node("compose", create_compose_node(composer))
    workflow.add_node("generate", create_generate_node(client, composer))
    workflow.add_node("validate", create_validate_node(validator))
    workflow.add_node("repair", create_repair_node(repair_engine))

    workflow.add_edge(START, "classify")
    workflow.add_edge("classify", "compose")
    workflow.add_edge("compose", "generate")
    workflow.add_edge("generate", "validate")
    workflow.add_conditional_edges("validate", route_after_validate, ["repair", END])
    workflow.add_edge("repair", END)
    return workflow


def compile_chapter_graph(
    client: GenerationClient,
    config: PipelineConfig | None = None,
    composer: PromptComposer | None = None,
    validator: BundleValidator | None = None,
    repair_engine: RepairEngine | None = None,
):
    """构建并编译单章生成图。每次调用相互独立，不挂 Checkpointer。"""
    workflow = build_chapter_graph(
        client,
        config=config,
        composer=composer,
        validator=validator,
        repair_engine=repair_engine,
    )
    return workflow.compile()
