"""
Console Log Sink

Ordered, append-only record of what happened in the session, consumed by the
UI console. Each line carries one tag from a fixed vocabulary and the sink
keeps only the most recent entries. The engine appends; coloring and layout
are the UI's business.

Every entry is also mirrored to the Python logger so server logs show the
same story.
"""

import logging
import math
from collections import deque
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, List, Optional

from config import CONFIG

logger = logging.getLogger(__name__)


class LogTag(str, Enum):
    POST = "POST"
    APP = "APP"
    FUND = "FUND"
    RESET = "RESET"
    SYSTEM = "SYSTEM"
    WARN = "WARN"


BOOT_MESSAGES = [
    "Booting Universal Base App simulation…",
    "Tip: Reach 40 Fund to hire your first Creator Studio.",
]


def format_number(n: float) -> str:
    """Compact display form: 1.50K, 2.00M, 3.10B."""
    if not math.isfinite(n):
        return "∞"
    if n >= 1e9:
        return f"{n / 1e9:.2f}B"
    if n >= 1e6:
        return f"{n / 1e6:.2f}M"
    if n >= 1e3:
        return f"{n / 1e3:.2f}K"
    return f"{n:.0f}"


class EventLog:
    """Capped, tagged console log."""

    def __init__(
        self,
        max_entries: int = CONFIG.log.max_entries,
        clock: Optional[Callable[[], datetime]] = None,
        time_format: str = CONFIG.log.time_format,
    ):
        if max_entries <= 0:
            raise ValueError(f"max_entries must be positive, got {max_entries}")
        self.max_entries = max_entries
        self.clock = clock or datetime.now
        self.time_format = time_format
        self._lines: Deque[str] = deque(maxlen=max_entries)

    @classmethod
    def with_boot_messages(cls, **kwargs) -> "EventLog":
        log = cls(**kwargs)
        for message in BOOT_MESSAGES:
            log.append(LogTag.SYSTEM, message)
        return log

    def append(self, tag: LogTag, message: str) -> str:
        tag = LogTag(tag)
        stamp = self.clock().strftime(self.time_format)
        line = f"[{stamp}] [{tag.value}] {message}"
        self._lines.append(line)

        if tag is LogTag.WARN:
            logger.warning(message)
        else:
            logger.info(f"[{tag.value}] {message}")
        return line

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    def tail(self, count: int) -> List[str]:
        if count <= 0:
            return []
        return list(self._lines)[-count:]

    def __len__(self) -> int:
        return len(self._lines)
