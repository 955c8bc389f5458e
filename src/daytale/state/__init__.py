"""图状态定义。"""

from daytale.state.chapter_state import ChapterGraphState

__all__ = ["ChapterGraphState"]
