"""
Sliding one-second throughput counter.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional


class RateMonitor:
    """
    Counts items and reports items/second once per window.

    Each instance is owned by a single thread; the acquisition and the
    processing side each keep their own, and a widening gap between their
    reported rates means the consumer cannot keep up.

    Args:
        label: Name used in the report line (e.g. "camera", "recv").
        window: Minimum seconds between reports.
        clock: Monotonic time source, injectable for tests.
        on_report: Optional callback receiving (label, rate) per report.
    """

    def __init__(
        self,
        label: str,
        window: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
        on_report: Optional[Callable[[str, float], None]] = None,
    ):
        self.label = label
        self.window = window
        self._clock = clock
        self._on_report = on_report
        self.count = 0
        self.window_start = clock()
        self.last_rate: Optional[float] = None
        self.total = 0

    def record_one(self) -> Optional[float]:
        """
        Count one item.

        Returns:
            The rate for the window that just closed, or None if the window
            is still open.
        """
        self.count += 1
        self.total += 1
        elapsed = self._clock() - self.window_start
        if elapsed < self.window:
            return None

        rate = self.count / elapsed
        logging.info(f"{self.label} FPS: {rate:.2f}")
        self.last_rate = rate
        self.count = 0
        self.window_start = self._clock()
        if self._on_report is not None:
            self._on_report(self.label, rate)
        return rate

    def reset(self) -> None:
        self.count = 0
        self.window_start = self._clock()
