"""Round-robin API key pool with per-key cooldown."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Sequence

from app.config.settings import settings
from app.services.log_sanitizer import mask_key, sanitize_log_extra

logger = logging.getLogger(__name__)


class KeyPool:
    """Hands out keys in rotation, skipping keys that are cooling down.

    If every key is cooling the first key is returned anyway; the caller's
    backoff absorbs the wait.
    """

    def __init__(self, keys: Sequence[str], *, clock: Callable[[], float] = time.monotonic) -> None:
        self._keys = [key for key in keys if key]
        self._clock = clock
        self._cooldown_until: dict[str, float] = {}
        self._cursor = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._keys)

    @property
    def keys(self) -> list[str]:
        return list(self._keys)

    def next_key(self) -> str:
        with self._lock:
            if not self._keys:
                return ""
            now = self._clock()
            count = len(self._keys)
            for offset in range(count):
                index = (self._cursor + offset) % count
                key = self._keys[index]
                if self._cooldown_until.get(key, 0.0) <= now:
                    self._cursor = (index + 1) % count
                    return key
            self._cursor = 1 % count
            return self._keys[0]

    def mark_rate_limited(self, key: str, cooldown_seconds: Optional[float] = None) -> None:
        if not key:
            return
        duration = cooldown_seconds if cooldown_seconds is not None else settings.AI_KEY_COOLDOWN_SECONDS
        with self._lock:
            self._cooldown_until[key] = self._clock() + duration
        logger.warning(
            "Model key cooling down after rate limit",
            extra=sanitize_log_extra(key_label=mask_key(key), cooldown_seconds=duration),
        )

    def is_cooling(self, key: str) -> bool:
        with self._lock:
            return self._cooldown_until.get(key, 0.0) > self._clock()
