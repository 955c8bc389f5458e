"""确定性引擎：大场面分类、章节包校验与修复。"""

from daytale.engine.repair import RepairContext, RepairEngine
from daytale.engine.set_piece import classify
from daytale.engine.validator import BundleValidator

__all__ = ["BundleValidator", "RepairContext", "RepairEngine", "classify"]
