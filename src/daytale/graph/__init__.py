"""LangGraph 章节生成图定义。"""

from daytale.graph.chapter_graph import build_chapter_graph, compile_chapter_graph
from daytale.graph.routing import route_after_validate

__all__ = ["build_chapter_graph", "compile_chapter_graph", "route_after_validate"]
