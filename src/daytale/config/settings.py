"""全局配置。"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class ModelConfig(BaseModel):
    """LLM 模型配置。"""

    provider: str = Field(
        default="openai",
        description="模型提供商: 'openai', 'google', 'anthropic' 等",
    )
    model_name: str = Field(default="gpt-4o-mini", description="模型名称")
    temperature: float = Field(default=0.6, description="生成温度")
    max_tokens: int = Field(default=3000, description="最大输出 token 数")
    api_key: str = Field(
        default="",
        description="模型 API key（可选，优先使用环境变量）",
    )
    json_mode: bool = Field(
        default=False, description="是否要求模型以严格 JSON 对象格式响应"
    )
    timeout: float = Field(default=120.0, description="单次调用超时（秒）")


def _default_chapter_model() -> ModelConfig:
    # 700-900 字正文约 1400-1800 token，再加其余字段
    return ModelConfig(temperature=0.6, max_tokens=3000, json_mode=True)


def _default_summary_model() -> ModelConfig:
    return ModelConfig(temperature=0.3, max_tokens=200)


class PipelineConfig(BaseModel):
    """章节管线全局配置。"""

    # ── 模型配置 ──
    chapter_model: ModelConfig = Field(
        default_factory=_default_chapter_model,
        description="生成章节包使用的模型（严格 JSON 输出）",
    )
    summary_model: ModelConfig = Field(
        default_factory=_default_summary_model,
        description="重写时回放摘要使用的模型（纯文本输出）",
    )

    # ── 章节包约束 ──
    title_min_chars: int = Field(default=6, description="标题最少字符数")
    title_max_chars: int = Field(default=16, description="标题最多字符数")
    chapter_min_chars: int = Field(default=700, description="正文目标下限（不计空白）")
    chapter_max_chars: int = Field(default=900, description="正文目标上限（不计空白）")
    keyword_max_chars: int = Field(default=12, description="单个事件关键词最大长度")
    min_keywords: int = Field(default=2, description="事件关键词最少个数")
    max_keywords: int = Field(default=4, description="事件关键词最多个数")
    suggestion_count: int = Field(default=5, description="明日建议条数")
    summary_max_sentences: int = Field(default=3, description="权威摘要最多句数")
    anchor_max_chars: int = Field(default=12, description="兜底抽取锚点的最大长度")
    min_action_beats: int = Field(default=3, description="每章最少动作节拍数")

    # ── 上下文截断 ──
    prior_tail_chars: int = Field(default=300, description="上一章结尾注入提示词的字符数")
    replay_entry_chars: int = Field(default=300, description="摘要回放时每条正文的截断长度")
    max_event_chars: int = Field(default=200, description="用户事件最大长度")

    # ── 并发保护 ──
    use_story_lease: bool = Field(
        default=True, description="生成/重写期间是否持有单故事租约"
    )
    lease_ttl_seconds: int = Field(default=180, description="单故事租约过期时间（秒）")

    # ── 日志 ──
    log_llm_calls: bool = Field(default=True, description="是否记录每次 LLM 调用")
    log_max_chars: int = Field(default=8000, description="调用日志中输入/输出的截断长度")
    log_retention_seconds: int = Field(
        default=24 * 60 * 60, description="内存调用日志保留时长（秒）"
    )


_ENV_BOOL_TRUE = {"1", "true", "yes", "on"}


def apply_env_overrides(config: PipelineConfig) -> PipelineConfig:
    """用环境变量覆盖模型配置（两个模型共用提供商与模型名）。"""
    provider = os.environ.get("DAYTALE_PROVIDER")
    model_name = os.environ.get("DAYTALE_MODEL")
    temperature = os.environ.get("DAYTALE_TEMPERATURE")
    timeout = os.environ.get("DAYTALE_TIMEOUT")

    for cfg in [config.chapter_model, config.summary_model]:
        if provider:
            cfg.provider = provider
        if model_name:
            cfg.model_name = model_name
        if timeout:
            cfg.timeout = float(timeout)
    # 摘要模型保持低温，只覆盖章节模型
    if temperature:
        config.chapter_model.temperature = float(temperature)

    log_flag = os.environ.get("DAYTALE_LOG_LLM")
    if log_flag is not None:
        config.log_llm_calls = log_flag.strip().lower() in _ENV_BOOL_TRUE
    return config


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_pipeline_config(path: str | Path | None = None) -> PipelineConfig:
    """加载配置：默认值 ← YAML 覆盖 ← 环境变量覆盖。"""
    config = PipelineConfig()
    if path:
        data: dict[str, Any] = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
        config = PipelineConfig.model_validate(_deep_merge(config.model_dump(), data))
    return apply_env_overrides(config)
