"""生成客户端：把组装好的请求发给外部模型，返回原始文本。

单次调用，不做内部重试；失败统一转换为 GenerationError。
每次调用恰好写一条调用日志，日志写入失败只记录到标准日志，不影响生成结果。
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Any

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from daytale.agents.utils import extract_response_text
from daytale.errors import GenerationError
from daytale.utils.call_log import CallLogSink, LLMCallRecord, sanitize

logger = logging.getLogger(__name__)


def new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


class CallMeta(BaseModel):
    """随调用写入日志的关联信息。"""

    operation: str = Field(default="chapter_bundle", description="操作名")
    route: str = Field(default="", description="调用来源（入口路径）")
    day: int | None = None
    revision: int | None = None
    request_id: str = Field(default_factory=new_request_id)
    story_id: str | None = None


def _usage_tokens(response: BaseMessage) -> tuple[int | None, int | None]:
    usage = getattr(response, "usage_metadata", None)
    if not usage:
        return None, None
    return usage.get("input_tokens"), usage.get("output_tokens")


def _model_identifier(model: BaseChatModel) -> str:
    for attr in ("model_name", "model"):
        value = getattr(model, attr, None)
        if isinstance(value, str) and value:
            return value
    return type(model).__name__


class GenerationClient:
    """对单个聊天模型的一次性调用封装。"""

    def __init__(
        self,
        model: BaseChatModel,
        model_name: str | None = None,
        sink: CallLogSink | None = None,
        timeout: float | None = 120.0,
        route: str = "",
        log_max_chars: int = 8000,
    ):
        self.model = model
        self.model_name = model_name or _model_identifier(model)
        self.sink = sink
        self.timeout = timeout
        self.route = route
        self.log_max_chars = log_max_chars

    async def invoke(
        self,
        prompt: str,
        meta: CallMeta | None = None,
        system_instruction: str | None = None,
    ) -> str:
        """发送请求并返回原始文本。

        Raises:
            GenerationError: 传输/API 失败、超时或空响应。
        """
        meta = meta or CallMeta()
        messages: list[BaseMessage] = []
        if system_instruction:
            messages.append(SystemMessage(content=system_instruction))
        messages.append(HumanMessage(content=prompt))

        start = time.perf_counter()
        response: BaseMessage | None = None
        try:
            response = await asyncio.wait_for(self.model.ainvoke(messages), timeout=self.timeout)
            text = extract_response_text(response).strip()
            if not text:
                raise GenerationError("模型返回空响应")
        except GenerationError as e:
            self._log(meta, prompt, start, error=str(e), response=response)
            raise
        except asyncio.TimeoutError as e:
            message = f"模型调用超时（{self.timeout}s）"
            self._log(meta, prompt, start, error=message)
            raise GenerationError(message) from e
        except Exception as e:
            self._log(meta, prompt, start, error=f"{type(e).__name__}: {e}")
            raise GenerationError(f"模型调用失败: {e}") from e

        latency_ms = self._log(meta, prompt, start, output=text, response=response)
        logger.info(
            "%s 调用完成 model=%s day=%s latency=%.0fms",
            meta.operation, self.model_name, meta.day, latency_ms,
        )
        return text

    def _log(
        self,
        meta: CallMeta,
        prompt: str,
        start: float,
        output: str | None = None,
        error: str | None = None,
        response: Any = None,
    ) -> float:
        """写一条调用记录；返回耗时（毫秒）。"""
        latency_ms = (time.perf_counter() - start) * 1000
        if error:
            logger.error("%s 调用失败 model=%s: %s", meta.operation, self.model_name, error)
        if self.sink is None:
            return latency_ms

        tokens_in, tokens_out = _usage_tokens(response) if response is not None else (None, None)
        try:
            self.sink.record(
                LLMCallRecord(
                    operation=meta.operation,
                    route=meta.route or self.route,
                    model=self.model_name,
                    status="error" if error else "success",
                    latency_ms=latency_ms,
                    input_redacted=sanitize(prompt, self.log_max_chars),
                    output_redacted=sanitize(output, self.log_max_chars) if output is not None else None,
                    error=error,
                    day=meta.day,
                    revision=meta.revision,
                    request_id=meta.request_id,
                    story_id=meta.story_id,
                    tokens_in=tokens_in,
                    tokens_out=tokens_out,
                )
            )
        except Exception as e:
            logger.warning("调用日志写入失败（已忽略）: %s", e)
        return latency_ms
