"""Agent 通用工具函数。"""

from __future__ import annotations

import json
import logging
from typing import Any, Iterator

from langchain_core.messages import BaseMessage

from daytale.errors import ParseError

logger = logging.getLogger(__name__)


def extract_text(content: str | list | Any) -> str:
    """从 LLM 响应中提取纯文本内容。

    不同模型提供商返回的 content 格式不同：
    - OpenAI: 直接返回 str
    - Google Gemini: 返回 list[dict]，每个 dict 包含 'type' 和 'text'

    此函数统一处理这些差异。
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return str(content)


def extract_response_text(response: BaseMessage) -> str:
    """从 LLM 响应消息中提取纯文本。"""
    return extract_text(response.content)


def _balanced_end(text: str, start: int) -> int | None:
    """返回从 start 处的 { 开始配平的 } 下标，无法配平时返回 None。"""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None


def iter_json_objects(text: str) -> Iterator[str]:
    """按出现顺序产出文本中括号配平的 {…} 子串。

    跳过字符串字面量内部的花括号与转义字符，因此能容忍模型在 JSON
    外面包裹说明文字或 markdown 代码块。某个 { 无法配平时从下一个 {
    继续；配平的候选之后从它的结尾继续，不再进入其内部。
    """
    start = text.find("{")
    while start != -1:
        end = _balanced_end(text, start)
        if end is None:
            start = text.find("{", start + 1)
            continue
        yield text[start : end + 1]
        start = text.find("{", end + 1)


def find_first_json_object(text: str) -> str | None:
    """返回文本中第一个括号配平的 {…} 子串。"""
    return next(iter_json_objects(text), None)


def extract_json_object(text: str) -> dict[str, Any]:
    """从 LLM 输出中提取第一个能解析为对象的 JSON。

    说明文字里可能出现 ``{title}`` 这类配平但不是 JSON 的片段，
    解析失败的候选会被跳过。

    Raises:
        ParseError: 找不到配平的对象，或所有候选都无法解析。
    """
    if not text or not text.strip():
        raise ParseError("响应为空")

    last_error: json.JSONDecodeError | None = None
    for candidate in iter_json_objects(text):
        try:
            data = json.loads(candidate)
        except json.JSONDecodeError as e:
            logger.debug("跳过无法解析的候选片段: %s", candidate[:40])
            last_error = e
            continue
        if isinstance(data, dict):
            return data

    if last_error is not None:
        raise ParseError(f"JSON 解析失败: {last_error}") from last_error
    raise ParseError("响应中没有 JSON 对象")
