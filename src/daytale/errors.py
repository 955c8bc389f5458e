"""异常分类。

调用方可见的错误只保留基础设施故障（生成服务、存储）与前置条件校验；
生成内容的形状或质量问题在管线内部被吸收。
"""

from __future__ import annotations


class DaytaleError(Exception):
    """所有 daytale 异常的基类。"""


class GenerationError(DaytaleError):
    """调用外部生成服务失败（网络、API、超时、空响应）。原样传播，不做内部重试。"""


class ParseError(DaytaleError):
    """原始输出中无法提取或解析 JSON 对象。仅在校验器内部使用，不向外传播。"""


class PersistenceError(DaytaleError):
    """故事状态存储读写失败。原样传播，管线不做补偿写入。"""


class StoryNotFoundError(PersistenceError):
    """指定的故事不存在。"""

    def __init__(self, story_id: str) -> None:
        self.story_id = story_id
        super().__init__(f"故事不存在: {story_id}")


class EntryNotFoundError(PersistenceError):
    """指定天数的条目不存在。"""

    def __init__(self, story_id: str, day: int) -> None:
        self.story_id = story_id
        self.day = day
        super().__init__(f"第{day}天的条目不存在 (story={story_id})")


class PolicyViolation(DaytaleError):
    """前置条件不满足（如第0天请求重写）。在任何生成调用之前报告，无副作用。"""
