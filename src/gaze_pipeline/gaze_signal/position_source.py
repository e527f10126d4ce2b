"""
Interface to the external face-landmark detector.

The detector delivers raw horizontal gaze positions (normally 0-1) with an
optional confidence. PositionSource converts detector payloads into Samples
and hands them to a single consumer; MockPositionSource synthesizes a
signal for demos and tests.
"""

import math
import time
import random
import logging
from typing import Optional, Dict, Any, Callable
from PyQt6.QtCore import QObject, pyqtSignal, QTimer

from .samples import Sample
from gaze_pipeline.utils.validation import ValidationError

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


class SampleCallback:
    """Adapts detector payloads to Sample objects for a consumer function."""

    def __init__(self, callback_func: Callable[[Sample], None]):
        """
        Args:
            callback_func: Function to call with each sample
        """
        self.callback_func = callback_func
        self.rejected_count = 0

    def __call__(self, payload: Dict[str, Any]):
        """
        Process one detector payload.

        Accepted keys: 'position' (or 'x'), optional 'confidence', optional
        'timestamp' in milliseconds (defaults to the current time).
        """
        if not payload:
            return

        position = payload.get('position', payload.get('x'))
        timestamp = payload.get('timestamp', now_ms())
        try:
            sample = Sample.create(timestamp, position, payload.get('confidence'))
        except ValidationError as e:
            self.rejected_count += 1
            logger.warning(f"Rejected detector sample: {e}")
            return

        self.callback_func(sample)


class PositionSource(QObject):
    """
    Base class for position producers. Subclasses call `publish()`.
    """

    streaming_changed = pyqtSignal(bool)
    error_occurred = pyqtSignal(str)

    def __init__(self):
        super().__init__()
        self.callback: Optional[SampleCallback] = None
        self.is_streaming = False

    def set_sample_callback(self, callback_func: Callable[[Sample], None]):
        self.callback = SampleCallback(callback_func)
        logger.info("Sample callback set")

    def publish(self, payload: Dict[str, Any]):
        if self.callback and self.is_streaming:
            self.callback(payload)

    def start_streaming(self) -> bool:
        if not self.callback:
            self.error_occurred.emit("No callback function set")
            return False
        self.is_streaming = True
        self.streaming_changed.emit(True)
        return True

    def stop_streaming(self):
        self.is_streaming = False
        self.streaming_changed.emit(False)


class MockPositionSource(PositionSource):
    """Sinusoidal gaze sweep with jitter and occasional dropouts."""

    def __init__(self, rate_hz: int = 30, sweep_period_s: float = 4.0,
                 noise: float = 0.01, dropout_rate: float = 0.02, seed: Optional[int] = None):
        super().__init__()
        self.rate_hz = rate_hz
        self.sweep_period_s = sweep_period_s
        self.noise = noise
        self.dropout_rate = dropout_rate
        self.rng = random.Random(seed)
        self.start_time = 0.0

        self.mock_timer = QTimer()
        self.mock_timer.setInterval(max(1, int(1000 / rate_hz)))
        self.mock_timer.timeout.connect(self._generate_mock_data)

    def start_streaming(self) -> bool:
        """Start mock data generation."""
        if not super().start_streaming():
            return False
        self.start_time = time.time()
        self.mock_timer.start()
        logger.info(f"Mock streaming started at {self.rate_hz}Hz")
        return True

    def stop_streaming(self):
        self.mock_timer.stop()
        super().stop_streaming()
        logger.info("Mock streaming stopped")

    def next_payload(self, timestamp_ms: Optional[int] = None) -> Dict[str, Any]:
        """Build one synthetic detector payload."""
        timestamp_ms = timestamp_ms if timestamp_ms is not None else now_ms()
        phase = 2 * math.pi * (timestamp_ms / 1000.0) / self.sweep_period_s
        position = 0.5 + 0.35 * math.sin(phase) + self.rng.gauss(0.0, self.noise)

        if self.rng.random() < self.dropout_rate:
            confidence = self.rng.uniform(0.0, 0.09)
        else:
            confidence = self.rng.uniform(0.8, 1.0)

        return {
            'position': min(1.0, max(0.0, position)),
            'confidence': confidence,
            'timestamp': timestamp_ms,
        }

    def _generate_mock_data(self):
        try:
            self.publish(self.next_payload())
        except Exception as e:
            logger.error(f"Error in mock data generation: {e}")
            self.error_occurred.emit(str(e))
