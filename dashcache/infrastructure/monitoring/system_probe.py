"""Process memory readings for the cache monitor."""

import logging
from typing import Optional, Tuple

import psutil

logger = logging.getLogger(__name__)


class ProcessMemoryProbe:
    """Reports (rss_bytes, limit_bytes) for the current process.

    The limit is the configured ceiling, or total system memory when none
    is configured. Returns None when the reading is unavailable.
    """

    def __init__(self, limit_bytes: Optional[int] = None):
        self.limit_bytes = limit_bytes
        self._process = psutil.Process()

    def __call__(self) -> Optional[Tuple[int, int]]:
        try:
            usage = self._process.memory_info().rss
            limit = self.limit_bytes or psutil.virtual_memory().total
        except (psutil.Error, OSError) as e:
            logger.debug(f"Memory probe unavailable: {e}")
            return None
        return usage, limit
