"""Daytale - 逐日连载故事生成器。"""

__version__ = "0.1.0"
