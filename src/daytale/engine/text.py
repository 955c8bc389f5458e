"""章节包校验与修复共用的文本工具。"""

from __future__ import annotations

import re

_SENTENCE_RE = re.compile(r"[^。！？!?]+[。！？!?]*")
_TRAILING_PUNCT_RE = re.compile(r"[。，、！？；：,.!?;:]+$")
_WHITESPACE_RE = re.compile(r"\s+")


def char_count(text: str) -> int:
    """按自然语言字符计数（码点而非字节）。"""
    return len(text)


def chapter_char_count(text: str) -> int:
    """正文字数：不计空白。"""
    return len(_WHITESPACE_RE.sub("", text))


def clean_title(title: str) -> str:
    """去掉首尾空白和结尾标点。"""
    return _TRAILING_PUNCT_RE.sub("", title.strip())


def split_sentences(text: str) -> list[str]:
    """朴素分句，保留句末标点。"""
    return [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip(" \n\t。！？!?")]


def compress_summary(summary: str, max_sentences: int = 3) -> str:
    """压缩为至多 max_sentences 句，只截断，不改写。"""
    summary = summary.strip()
    sentences = split_sentences(summary)
    if len(sentences) <= max_sentences:
        return summary
    kept = sentences[:max_sentences]
    if not re.search(r"[。！？!?]$", kept[-1]):
        kept[-1] += "。"
    return "".join(kept)


def title_contains_keyword(title: str, keywords: list[str]) -> bool:
    return any(kw.strip() and kw.strip() in title for kw in keywords)
