"""提示词模板：以 .txt 文件存放在本目录，与组装逻辑分离。

模板使用 str.format 占位符（{variable}），字面花括号写作 {{ }}。
"""

from __future__ import annotations

import functools
from pathlib import Path
from typing import Any

_PROMPTS_DIR = Path(__file__).parent


@functools.lru_cache(maxsize=32)
def load_prompt(name: str) -> str:
    """加载指定名称的提示词模板。

    Raises:
        FileNotFoundError: 模板文件不存在时。
    """
    filename = name if name.endswith(".txt") else f"{name}.txt"
    filepath = _PROMPTS_DIR / filename
    if not filepath.exists():
        raise FileNotFoundError(f"提示词文件不存在: {filepath}")
    return filepath.read_text(encoding="utf-8").strip()


def format_prompt(name: str, **kwargs: Any) -> str:
    """加载模板并填充变量。"""
    return load_prompt(name).format(**kwargs)


__all__ = ["load_prompt", "format_prompt"]
