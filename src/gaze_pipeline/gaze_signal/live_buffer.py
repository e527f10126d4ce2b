"""
Bounded, time-ordered sample window feeding the live chart.
"""

import time
import bisect
import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Callable, Tuple
from PyQt6.QtCore import QObject, pyqtSignal, QTimer

from .samples import FilteredSample

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass
class LiveWindowConfig:
    """Live window retention and stall-fill parameters."""
    window_ms: int = 15000
    max_samples: int = 5000
    stall_ms: int = 2000
    check_interval_ms: int = 100
    placeholder_value: float = 0.0
    placeholder_confidence: float = 0.0

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'LiveWindowConfig':
        return cls(
            window_ms=config.get('window_ms', 15000),
            max_samples=config.get('max_samples', 5000),
            stall_ms=config.get('stall_ms', 2000),
            check_interval_ms=config.get('check_interval_ms', 100),
            placeholder_value=config.get('placeholder_value', 0.0),
            placeholder_confidence=config.get('placeholder_confidence', 0.0),
        )


class LiveWindowBuffer(QObject):
    """
    Trailing window of filtered samples.

    Retention is relative to the latest sample timestamp seen, so the window
    is independent of system clock jitter. While monitoring, a stalled source
    is papered over with neutral placeholder samples that exist only here.
    """

    window_updated = pyqtSignal(int)  # Current sample count
    placeholder_added = pyqtSignal(object)  # FilteredSample

    def __init__(self, config: Optional[LiveWindowConfig] = None,
                 clock: Optional[Callable[[], int]] = None):
        """
        Initialize live window buffer.

        Args:
            config: Window configuration
            clock: Millisecond clock used for stall detection
        """
        super().__init__()

        self.config = config or LiveWindowConfig()
        self.clock = clock or wall_clock_ms
        self.buffer = deque(maxlen=self.config.max_samples)
        self.latest_timestamp: Optional[int] = None
        self.last_arrival_ms: Optional[int] = None
        self.last_real_timestamp: Optional[int] = None
        self.placeholder_count = 0

        self.stall_timer = QTimer()
        self.stall_timer.setInterval(self.config.check_interval_ms)
        self.stall_timer.timeout.connect(self.check_stall)

    def append(self, sample: FilteredSample):
        """
        Add a sample and evict everything older than the window.

        Args:
            sample: Filtered sample from the live path
        """
        self._insert(sample)
        if not sample.is_placeholder:
            self.last_arrival_ms = self.clock()
            self.last_real_timestamp = sample.timestamp
        self._evict()
        self.window_updated.emit(len(self.buffer))

    def _insert(self, sample: FilteredSample):
        if not self.buffer or sample.timestamp >= self.buffer[-1].timestamp:
            self.buffer.append(sample)
        else:
            # Late arrival: keep the window sorted
            timestamps = [s.timestamp for s in self.buffer]
            position = bisect.bisect_right(timestamps, sample.timestamp)
            if len(self.buffer) == self.buffer.maxlen:
                if position == 0:
                    return
                self.buffer.popleft()
                position -= 1
            self.buffer.insert(position, sample)

        if self.latest_timestamp is None or sample.timestamp > self.latest_timestamp:
            self.latest_timestamp = sample.timestamp

    def _evict(self):
        if self.latest_timestamp is None:
            return
        cutoff = self.latest_timestamp - self.config.window_ms
        while self.buffer and self.buffer[0].timestamp < cutoff:
            self.buffer.popleft()

    def start_monitoring(self):
        """Start placeholder injection checks (recording active)."""
        self.last_arrival_ms = self.clock()
        self.stall_timer.start()
        logger.debug("Live window stall monitoring started")

    def stop_monitoring(self):
        self.stall_timer.stop()
        logger.debug("Live window stall monitoring stopped")

    @property
    def is_monitoring(self) -> bool:
        return self.stall_timer.isActive()

    def check_stall(self) -> Optional[FilteredSample]:
        """
        Add one placeholder if the source has been silent for too long.

        Returns:
            The placeholder sample, or None if the source is live
        """
        # No time base until the detector has produced a real sample
        if self.last_arrival_ms is None or self.last_real_timestamp is None:
            return None

        now = self.clock()
        silence = now - self.last_arrival_ms
        if silence <= self.config.stall_ms:
            return None

        timestamp = max(self.last_real_timestamp + silence, self.latest_timestamp)
        placeholder = FilteredSample(
            timestamp=timestamp,
            raw_value=self.config.placeholder_value,
            confidence=self.config.placeholder_confidence,
            filtered_value=self.config.placeholder_value,
            is_outlier=False,
            quality=self.config.placeholder_confidence,
            is_placeholder=True,
        )
        self.append(placeholder)
        self.placeholder_count += 1
        self.placeholder_added.emit(placeholder)
        logger.debug(f"Placeholder added after {silence}ms without samples")
        return placeholder

    def samples(self, include_placeholders: bool = True) -> List[FilteredSample]:
        if include_placeholders:
            return list(self.buffer)
        return [s for s in self.buffer if not s.is_placeholder]

    def values(self) -> List[Tuple[int, float]]:
        """(timestamp, display value) pairs for plotting."""
        return [(s.timestamp, s.value) for s in self.buffer]

    def time_range(self) -> Optional[Tuple[int, int]]:
        if not self.buffer:
            return None
        return self.buffer[0].timestamp, self.buffer[-1].timestamp

    def clear(self):
        self.buffer.clear()
        self.latest_timestamp = None
        self.last_arrival_ms = None
        self.last_real_timestamp = None
        self.placeholder_count = 0

    def __len__(self) -> int:
        return len(self.buffer)
