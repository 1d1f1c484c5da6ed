"""
Short-lived in-memory store for synthesized speech served to receivers
"""

import logging
import time
from typing import Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)


class AudioBufferCache:
    """One buffer per key; a newer buffer for the same key replaces the older one"""

    def __init__(self, retention_seconds: float = 60, clock: Callable[[], float] = time.monotonic):
        self.retention = retention_seconds
        self.clock = clock
        self._buffers: Dict[str, Tuple[bytes, float]] = {}

    def put(self, key: str, data: bytes):
        self.prune()
        self._buffers[key] = (data, self.clock() + self.retention)
        logger.debug(f"[AUDIO] Stored {len(data)} bytes for {key}")

    def get(self, key: str) -> Optional[bytes]:
        entry = self._buffers.get(key)
        if entry is None:
            return None
        data, expires = entry
        if self.clock() >= expires:
            del self._buffers[key]
            return None
        return data

    def prune(self) -> int:
        now = self.clock()
        expired = [key for key, (_, expires) in self._buffers.items() if now >= expires]
        for key in expired:
            del self._buffers[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._buffers)
