"""LLM 调用日志。

每次生成调用写入一条结构化记录，支持：
- 内存日志（线程安全，按保留时长清理）
- JSON Lines 文件日志（只追加）
- 按 operation / model / day 分类的调用统计
- 写入前脱敏与截断
"""

from __future__ import annotations

import json
import re
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Literal, Optional, Protocol

CallStatus = Literal["success", "error"]

_API_KEY_RE = re.compile(r"sk-[a-zA-Z0-9]{20,}")
# 只按 ASCII 判定词边界，紧贴中文的令牌也能命中
_OPAQUE_TOKEN_RE = re.compile(r"\b[a-zA-Z0-9]{32,}\b", re.ASCII)

TRUNCATED_MARKER = "...[truncated]"


def redact(text: str) -> str:
    """遮蔽 API key 与长串不透明令牌。"""
    text = _API_KEY_RE.sub("sk-***", text)
    return _OPAQUE_TOKEN_RE.sub("***", text)


def truncate(text: str, max_chars: int = 8000) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + TRUNCATED_MARKER


def sanitize(value: Any, max_chars: int = 8000) -> str:
    """转成字符串后脱敏并截断。"""
    if value is None:
        return ""
    text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
    return truncate(redact(text), max_chars)


def new_call_id() -> str:
    return f"llm_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


@dataclass
class LLMCallRecord:
    """单次 LLM 调用记录。"""
    operation: str
    route: str
    model: str
    status: CallStatus
    latency_ms: float
    input_redacted: str
    id: str = field(default_factory=new_call_id)
    timestamp: float = field(default_factory=time.time)
    output_redacted: Optional[str] = None
    error: Optional[str] = None
    day: Optional[int] = None
    revision: Optional[int] = None
    request_id: str = ""
    story_id: Optional[str] = None
    tokens_in: Optional[int] = None
    tokens_out: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> LLMCallRecord:
        known = {f for f in cls.__dataclass_fields__}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class CallStats:
    """调用统计汇总。"""
    total_calls: int = 0
    error_calls: int = 0
    total_tokens_in: int = 0
    total_tokens_out: int = 0
    total_latency_ms: float = 0.0

    by_operation: Dict[str, CallStats] = field(default_factory=dict)
    by_model: Dict[str, CallStats] = field(default_factory=dict)
    by_day: Dict[int, CallStats] = field(default_factory=dict)

    def add(self, record: LLMCallRecord) -> None:
        self.total_calls += 1
        if record.status == "error":
            self.error_calls += 1
        self.total_tokens_in += record.tokens_in or 0
        self.total_tokens_out += record.tokens_out or 0
        self.total_latency_ms += record.latency_ms

    def summary(self) -> Dict[str, Any]:
        return {
            "calls": self.total_calls,
            "errors": self.error_calls,
            "tokens_in": self.total_tokens_in,
            "tokens_out": self.total_tokens_out,
            "avg_latency_ms": self.total_latency_ms / max(self.total_calls, 1),
        }


class CallLogSink(Protocol):
    """调用日志的写入端。实现方可以抛异常，调用方负责吞掉。"""

    def record(self, record: LLMCallRecord) -> None: ...


def _matches(record: LLMCallRecord, status: Optional[str], operation: Optional[str]) -> bool:
    if status and record.status != status:
        return False
    if operation and record.operation != operation:
        return False
    return True


def _paginate(
    matched: List[LLMCallRecord], limit: int, cursor: int
) -> tuple[List[LLMCallRecord], Optional[int]]:
    page = matched[cursor : cursor + limit]
    next_cursor = cursor + limit if cursor + limit < len(matched) else None
    return page, next_cursor


def build_stats(records: List[LLMCallRecord]) -> CallStats:
    stats = CallStats()
    for record in records:
        stats.add(record)
        stats.by_operation.setdefault(record.operation, CallStats()).add(record)
        stats.by_model.setdefault(record.model, CallStats()).add(record)
        if record.day is not None:
            stats.by_day.setdefault(record.day, CallStats()).add(record)
    return stats


def stats_to_dict(stats: CallStats) -> Dict[str, Any]:
    return {
        "summary": stats.summary(),
        "by_operation": {op: s.summary() for op, s in stats.by_operation.items()},
        "by_model": {m: s.summary() for m, s in stats.by_model.items()},
        "by_day": {d: s.summary() for d, s in sorted(stats.by_day.items())},
    }


class MemoryCallLog:
    """内存调用日志（线程安全），超过保留时长的记录在写入和读取时清理。"""

    def __init__(
        self,
        retention_seconds: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ):
        self._records: List[LLMCallRecord] = []
        self._lock = threading.Lock()
        self._retention = retention_seconds
        self._clock = clock

    def _prune(self) -> None:
        cutoff = self._clock() - self._retention
        self._records = [r for r in self._records if r.timestamp >= cutoff]

    def record(self, record: LLMCallRecord) -> None:
        with self._lock:
            self._records.append(record)
            self._prune()

    def list(
        self,
        limit: int = 50,
        cursor: int = 0,
        status: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> tuple[List[LLMCallRecord], Optional[int]]:
        """按时间倒序分页，返回 (记录, 下一页游标)。"""
        with self._lock:
            self._prune()
            matched = [r for r in reversed(self._records) if _matches(r, status, operation)]
        return _paginate(matched, limit, cursor)

    def get(self, call_id: str) -> Optional[LLMCallRecord]:
        with self._lock:
            self._prune()
            for record in self._records:
                if record.id == call_id:
                    return record
        return None

    def stats(self) -> CallStats:
        with self._lock:
            self._prune()
            return build_stats(list(self._records))

    def to_dict(self) -> Dict[str, Any]:
        return stats_to_dict(self.stats())

    def reset(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            self._prune()
            return len(self._records)


class JsonlCallLog:
    """JSON Lines 文件调用日志，每条记录一行，只追加。"""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def record(self, record: LLMCallRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def read_all(self) -> List[LLMCallRecord]:
        if not self.path.exists():
            return []
        records: List[LLMCallRecord] = []
        with open(self.path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    records.append(LLMCallRecord.from_dict(json.loads(line)))
        return records

    def list(
        self,
        limit: int = 50,
        cursor: int = 0,
        status: Optional[str] = None,
        operation: Optional[str] = None,
    ) -> tuple[List[LLMCallRecord], Optional[int]]:
        """与 MemoryCallLog.list 相同：按时间倒序分页，返回 (记录, 下一页游标)。"""
        matched = [r for r in reversed(self.read_all()) if _matches(r, status, operation)]
        return _paginate(matched, limit, cursor)

    def get(self, call_id: str) -> Optional[LLMCallRecord]:
        for record in self.read_all():
            if record.id == call_id:
                return record
        return None

    def stats(self) -> CallStats:
        return build_stats(self.read_all())
