"""条件路由逻辑。"""

from __future__ import annotations

from langgraph.graph import END

from daytale.state.chapter_state import ChapterGraphState


def route_after_validate(state: ChapterGraphState) -> str:
    """校验通过直接结束，否则进入修复节点。"""
    if state.get("next_action") == "repair":
        return "repair"
    return END
