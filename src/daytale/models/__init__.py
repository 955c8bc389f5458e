"""Pydantic 数据模型。"""

from daytale.models.bundle import (
    ANCHOR_KEYS,
    Anchors,
    ChapterBundle,
    SetPieceVerdict,
    Suggestion,
    ValidationIssue,
    ValidationResult,
)
from daytale.models.story import StoryEntry, StoryMeta, StoryState

__all__ = [
    "ANCHOR_KEYS",
    "Anchors",
    "ChapterBundle",
    "SetPieceVerdict",
    "StoryEntry",
    "StoryMeta",
    "StoryState",
    "Suggestion",
    "ValidationIssue",
    "ValidationResult",
]
