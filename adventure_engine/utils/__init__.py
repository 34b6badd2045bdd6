"""
Utility modules for the Adventure Engine
"""

from .cache import EvaluationCache
from .jsonlogic import JSONLogicEvaluator
from .memory import MemoryMonitor
from .streaming import AdventureFile, stream_file, write_file

__all__ = [
    "AdventureFile",
    "EvaluationCache",
    "JSONLogicEvaluator",
    "MemoryMonitor",
    "stream_file",
    "write_file",
]
