"""
Process memory monitoring for long-running batch work.
"""

import asyncio
import gc
import os
from typing import Callable, Dict, Optional

import psutil

from adventure_engine.utils.logger import get_logger

logger = get_logger(__name__)

MemoryWarningCallback = Callable[[Dict[str, int]], None]


class MemoryMonitor:
    """Checks resident memory against a warning threshold"""

    def __init__(self, warning_bytes: int):
        self.warning_bytes = warning_bytes
        self.warnings = 0

    def get_current_usage(self) -> int:
        """Resident set size of this process in bytes, 0 if unavailable"""
        try:
            process = psutil.Process(os.getpid())
            return process.memory_info().rss
        except Exception as e:
            logger.error(f"Memory check failed: {e}")
            return 0

    async def check_memory_usage(
        self, on_warning: Optional[MemoryWarningCallback] = None
    ) -> bool:
        """
        Collect garbage and notify when usage is above the threshold.

        Returns:
            True if memory pressure was detected
        """
        usage = self.get_current_usage()
        if usage <= self.warning_bytes:
            return False

        self.warnings += 1
        logger.warning(
            f"Memory usage {usage // (1024 * 1024)}MB above "
            f"{self.warning_bytes // (1024 * 1024)}MB threshold, collecting"
        )
        gc.collect()
        if on_warning:
            on_warning({"usage": usage, "threshold": self.warning_bytes})
        await self.yield_control()
        return True

    async def yield_control(self) -> None:
        """Let other tasks on the event loop run"""
        await asyncio.sleep(0)
