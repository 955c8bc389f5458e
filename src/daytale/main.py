"""Daytale CLI 入口：逐日连载故事生成。"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

from langchain_core.language_models.fake_chat_models import FakeListChatModel
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from daytale.config.settings import PipelineConfig, load_pipeline_config
from daytale.config.worlds import WorldRegistry, default_worlds, load_worlds_from_yaml
from daytale.errors import DaytaleError, StoryNotFoundError
from daytale.llm.client import GenerationClient
from daytale.llm.factory import init_model
from daytale.pipeline import ChapterPipeline, ChapterResult
from daytale.storage.files import FileStoryStore
from daytale.utils.call_log import JsonlCallLog, stats_to_dict

console = Console()
logger = logging.getLogger("daytale")

CALL_LOG_FILE = "llm_calls.jsonl"

# 离线模式的模型响应：不是 JSON，整章走修复路径
DRY_RUN_CHAPTER_RESPONSE = "（离线模式：未调用模型）"
DRY_RUN_SUMMARY_RESPONSE = "两位主角仍在旅途中。前几天的经历留下了尚未解开的线索。"


def _data_dir(args: argparse.Namespace) -> Path:
    return Path(args.data_dir or os.environ.get("DAYTALE_DATA_DIR") or "data")


def _build_pipeline(args: argparse.Namespace) -> tuple[ChapterPipeline, FileStoryStore, PipelineConfig]:
    """按命令行参数装配存储、模型与管线。"""
    config = load_pipeline_config(args.config)
    data_dir = _data_dir(args)
    store = FileStoryStore(data_dir)
    sink = JsonlCallLog(data_dir / CALL_LOG_FILE) if config.log_llm_calls else None

    if args.dry_run:
        chapter_model = FakeListChatModel(responses=[DRY_RUN_CHAPTER_RESPONSE])
        summary_model = FakeListChatModel(responses=[DRY_RUN_SUMMARY_RESPONSE])
        chapter_name = summary_name = "dry-run"
    else:
        chapter_model = init_model(config.chapter_model)
        summary_model = init_model(config.summary_model)
        chapter_name = config.chapter_model.model_name
        summary_name = config.summary_model.model_name

    chapter_client = GenerationClient(
        chapter_model,
        model_name=chapter_name,
        sink=sink,
        timeout=config.chapter_model.timeout,
        route="cli",
        log_max_chars=config.log_max_chars,
    )
    summary_client = GenerationClient(
        summary_model,
        model_name=summary_name,
        sink=sink,
        timeout=config.summary_model.timeout,
        route="cli",
        log_max_chars=config.log_max_chars,
    )
    pipeline = ChapterPipeline(
        store,
        chapter_client,
        summary_client=summary_client,
        worlds=_load_worlds(args),
        config=config,
    )
    return pipeline, store, config


def _load_worlds(args: argparse.Namespace) -> WorldRegistry:
    if getattr(args, "worlds", None):
        return load_worlds_from_yaml(args.worlds)
    return default_worlds()


async def _resolve_story(store: FileStoryStore, story_id: str | None) -> str:
    """未指定故事时使用当前活跃故事。"""
    if story_id:
        return story_id
    active = await store.get_active_story()
    if not active:
        raise StoryNotFoundError("(未指定且没有活跃故事)")
    return active


# ────────────────────────────────────────────
# 命令
# ────────────────────────────────────────────


def cmd_worlds(args: argparse.Namespace) -> None:
    """列出可用世界。"""
    table = Table(title="可用世界", show_lines=True)
    table.add_column("ID", style="cyan")
    table.add_column("名称", style="white")
    table.add_column("主角", style="green")
    table.add_column("描述", style="white")
    for world in _load_worlds(args).all():
        table.add_row(world.id, world.display_name, "、".join(world.principal_names), world.description)
    console.print(table)


async def cmd_new(args: argparse.Namespace) -> None:
    pipeline, _, _ = _build_pipeline(args)
    meta = await pipeline.create_story(args.world, story_id=args.id)
    console.print(f"[green]✓[/green] 新故事已创建: [bold]{meta.story_id}[/bold] (world={meta.world_id})")


async def cmd_use(args: argparse.Namespace) -> None:
    pipeline, _, _ = _build_pipeline(args)
    state = await pipeline.continue_story(args.story)
    console.print(f"[green]✓[/green] 当前故事: [bold]{state.story_id}[/bold]（第{state.day}天）")


async def cmd_next(args: argparse.Namespace) -> None:
    pipeline, store, _ = _build_pipeline(args)
    story_id = await _resolve_story(store, args.story)
    result = await pipeline.generate_next(story_id, args.event, allow_final=args.final)
    _print_result(result)


async def cmd_rewrite(args: argparse.Namespace) -> None:
    pipeline, store, _ = _build_pipeline(args)
    story_id = await _resolve_story(store, args.story)
    result = await pipeline.rewrite_latest(story_id, args.event)
    _print_result(result)


async def cmd_show(args: argparse.Namespace) -> None:
    store = FileStoryStore(_data_dir(args))
    story_id = await _resolve_story(store, args.story)
    state = await store.load_state(story_id)
    entries = await store.load_entries(story_id)
    if args.day is not None:
        entries = [e for e in entries if e.day == args.day]

    console.print(
        Panel(state.summary, title=f"{story_id} · 第{state.day}天 · {state.world_id}", style="cyan")
    )
    for entry in entries:
        console.print(
            Panel(
                entry.chapter_text,
                title=f"第{entry.day}天 {entry.title} (rev {entry.revision})",
                subtitle=f"事件：{entry.user_event}",
            )
        )


async def cmd_stories(args: argparse.Namespace) -> None:
    store = FileStoryStore(_data_dir(args))
    active = await store.get_active_story()
    table = Table(title="故事列表")
    table.add_column("", width=2)
    table.add_column("ID", style="cyan")
    table.add_column("世界", style="green")
    table.add_column("天数", justify="right")
    table.add_column("更新时间", style="dim")
    for meta in await store.list_stories():
        state = await store.load_state(meta.story_id)
        table.add_row(
            "▶" if meta.story_id == active else "",
            meta.story_id,
            meta.world_id,
            str(state.day),
            meta.updated_at.strftime("%Y-%m-%d %H:%M"),
        )
    console.print(table)


def cmd_logs(args: argparse.Namespace) -> None:
    """查看 LLM 调用日志。"""
    call_log = JsonlCallLog(_data_dir(args) / CALL_LOG_FILE)
    if args.stats:
        summary = stats_to_dict(call_log.stats())
        table = Table(title="调用统计（按操作）")
        table.add_column("操作", style="cyan")
        for col in ["calls", "errors", "tokens_in", "tokens_out", "avg_latency_ms"]:
            table.add_column(col, justify="right")
        for op, s in summary["by_operation"].items():
            table.add_row(
                op, str(s["calls"]), str(s["errors"]), str(s["tokens_in"]),
                str(s["tokens_out"]), f"{s['avg_latency_ms']:.0f}",
            )
        console.print(table)
        return

    table = Table(title="LLM 调用日志")
    table.add_column("ID", style="dim")
    table.add_column("操作", style="cyan")
    table.add_column("模型")
    table.add_column("状态")
    table.add_column("天/版本", justify="right")
    table.add_column("耗时", justify="right")
    table.add_column("错误", style="red")
    records, _ = call_log.list(limit=args.limit, status=args.status, operation=args.op)
    for record in records:
        status = "[green]success[/green]" if record.status == "success" else "[red]error[/red]"
        day_rev = f"{record.day or '-'}/{record.revision or '-'}"
        table.add_row(
            record.id, record.operation, record.model, status, day_rev,
            f"{record.latency_ms:.0f}ms", (record.error or "")[:60],
        )
    console.print(table)


def _print_result(result: ChapterResult) -> None:
    bundle = result.bundle
    console.print(
        Panel(
            bundle.chapter,
            title=f"第{result.day}天 {bundle.title} (rev {result.revision})",
            subtitle="关键词：" + "、".join(bundle.event_keywords),
        )
    )
    if result.verdict.is_major:
        console.print(f"[bold red]大场面[/bold red] type={result.verdict.type}")

    anchors = Table(title="锚点", show_header=False)
    anchors.add_column("", style="cyan", width=3)
    anchors.add_column("")
    anchors.add_row("A", bundle.anchors.A)
    anchors.add_row("B", bundle.anchors.B)
    anchors.add_row("C", bundle.anchors.C)
    console.print(anchors)

    suggestions = Table(title="明日建议")
    suggestions.add_column("#", width=3)
    suggestions.add_column("建议")
    suggestions.add_column("锚点", style="cyan")
    for i, s in enumerate(bundle.suggestions, 1):
        suggestions.add_row(str(i), s.text, ",".join(s.uses_anchors))
    console.print(suggestions)

    console.print(f"[dim]摘要：{result.summary}[/dim]")
    if result.repaired_fields:
        console.print(f"[yellow]已修复字段：{', '.join(result.repaired_fields)}[/yellow]")


# ────────────────────────────────────────────
# 入口
# ────────────────────────────────────────────


def main() -> None:
    """CLI 主入口。"""
    from dotenv import load_dotenv
    load_dotenv()

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--data-dir", default="", help="数据目录（默认: $DAYTALE_DATA_DIR 或 data）")
    common.add_argument("--config", default=None, help="YAML 配置文件，覆盖默认管线参数")
    common.add_argument("--worlds", default=None, help="自定义世界配置 YAML")
    common.add_argument("--verbose", "-v", action="store_true", help="详细日志输出")
    common.add_argument(
        "--dry-run", action="store_true", help="离线模式：不调用模型，由修复引擎生成占位章节"
    )

    parser = argparse.ArgumentParser(
        prog="daytale",
        description="Daytale - 逐日连载故事生成器",
    )
    subparsers = parser.add_subparsers(dest="command", help="可用命令")

    subparsers.add_parser("worlds", parents=[common], help="列出可用世界")

    new_parser = subparsers.add_parser("new", parents=[common], help="在指定世界中创建新故事")
    new_parser.add_argument("world", help="世界 ID")
    new_parser.add_argument("--id", default=None, help="指定故事 ID（默认自动生成）")

    use_parser = subparsers.add_parser("use", parents=[common], help="切换当前活跃故事")
    use_parser.add_argument("story", help="故事 ID")

    next_parser = subparsers.add_parser("next", parents=[common], help="根据今日事件生成下一章")
    next_parser.add_argument("event", help="今日事件（一句话）")
    next_parser.add_argument("--story", "-s", default=None, help="故事 ID（默认当前活跃故事）")
    next_parser.add_argument("--final", action="store_true", help="允许本章写下主线结局")

    rewrite_parser = subparsers.add_parser("rewrite", parents=[common], help="用新事件重写最近一章")
    rewrite_parser.add_argument("event", help="新的事件")
    rewrite_parser.add_argument("--story", "-s", default=None, help="故事 ID（默认当前活跃故事）")

    show_parser = subparsers.add_parser("show", parents=[common], help="查看故事摘要与章节")
    show_parser.add_argument("--story", "-s", default=None, help="故事 ID（默认当前活跃故事）")
    show_parser.add_argument("--day", type=int, default=None, help="只显示某一天")

    subparsers.add_parser("stories", parents=[common], help="列出全部故事")

    logs_parser = subparsers.add_parser("logs", parents=[common], help="查看 LLM 调用日志")
    logs_parser.add_argument("--status", choices=["success", "error"], default=None, help="按状态过滤")
    logs_parser.add_argument("--op", default=None, help="按操作过滤（如 chapter_bundle）")
    logs_parser.add_argument("--limit", type=int, default=20, help="最多显示条数")
    logs_parser.add_argument("--stats", action="store_true", help="显示统计而非明细")

    args = parser.parse_args()

    # 配置日志
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_time=False, show_path=False)],
    )

    async_commands = {
        "new": cmd_new,
        "use": cmd_use,
        "next": cmd_next,
        "rewrite": cmd_rewrite,
        "show": cmd_show,
        "stories": cmd_stories,
    }
    try:
        if args.command == "worlds":
            cmd_worlds(args)
        elif args.command == "logs":
            cmd_logs(args)
        elif args.command in async_commands:
            asyncio.run(async_commands[args.command](args))
        else:
            parser.print_help()
    except DaytaleError as e:
        console.print(f"[bold red]✗ {type(e).__name__}[/bold red]: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
