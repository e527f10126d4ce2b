"""
Three-point calibration for one-dimensional gaze position.

Maps raw detector positions onto the normalized [-1, 1] range:
left reference → -1, center reference → 0, right reference → +1.

Calibration is captured interactively: a countdown lets the user settle on
the target, then raw positions are collected for a fixed sampling window and
averaged into a reference value for that target.
"""

import time
import logging
from enum import Enum
from typing import Optional, Dict, List, Any
from dataclasses import dataclass
from PyQt6.QtCore import QObject, pyqtSignal, QTimer

from gaze_pipeline.utils.validation import CalibrationError, ValidationUtils

logger = logging.getLogger(__name__)


class CalibrationPosition(Enum):
    """Calibration targets."""
    LEFT = "left"
    CENTER = "center"
    RIGHT = "right"


@dataclass
class CalibrationPoint:
    """Reference raw value recorded for one target."""
    position: CalibrationPosition
    reference_value: float
    sample_count: int = 0
    timestamp: float = 0.0  # Wall-clock capture time


def _clamp(value: float, low: float = -1.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def _interpolate(raw: float, x0: float, x1: float, y0: float, y1: float) -> float:
    width = x1 - x0
    if abs(width) < 1e-12:
        # Degenerate segment: snap to the endpoint on raw's side
        return y1 if raw >= x1 else y0
    return y0 + (raw - x0) * (y1 - y0) / width


@dataclass(frozen=True)
class CalibrationMap:
    """Piecewise-linear raw → [-1, 1] mapping."""
    left: float
    center: float
    right: float

    def is_valid(self) -> bool:
        """Check strict left < center < right ordering."""
        return self.left < self.center < self.right

    def validate(self) -> 'CalibrationMap':
        for name, value in (('left', self.left), ('center', self.center), ('right', self.right)):
            if not ValidationUtils.is_number(value):
                raise CalibrationError(f"Calibration {name} value is not numeric: {value!r}")
        if not self.is_valid():
            raise CalibrationError(
                f"Calibration points out of order: left={self.left:.4f}, "
                f"center={self.center:.4f}, right={self.right:.4f}"
            )
        return self

    def calibrate(self, raw: float) -> float:
        """
        Map a raw position to [-1, 1].

        Args:
            raw: Raw detector position

        Returns:
            Calibrated position, clamped to [-1, 1]
        """
        if raw <= self.center:
            value = _interpolate(raw, self.left, self.center, -1.0, 0.0)
        else:
            value = _interpolate(raw, self.center, self.right, 0.0, 1.0)
        return _clamp(value)

    def to_dict(self) -> Dict[str, float]:
        return {'left': self.left, 'center': self.center, 'right': self.right}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CalibrationMap':
        return cls(float(data['left']), float(data['center']), float(data['right'])).validate()


def passthrough_calibrate(raw: float) -> float:
    """Fallback used while no complete calibration exists."""
    return _clamp(raw)


@dataclass
class CalibrationConfig:
    """Timing of the guided capture."""
    countdown_seconds: int = 3
    sampling_window_ms: int = 2000

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'CalibrationConfig':
        return cls(
            countdown_seconds=config.get('countdown_seconds', 3),
            sampling_window_ms=config.get('sampling_window_ms', 2000),
        )


class CalibrationEngine(QObject):
    """
    Guided three-point calibration capture.

    Workflow per target:
    1. begin_calibration(position) starts the countdown
    2. the sampling window opens; add_raw_sample() collects positions
    3. finish_calibration(position) runs when the window elapses

    Once all three targets are captured and ordered, the mapping becomes
    active. A rejected capture leaves the previous mapping in effect.
    """

    countdown_tick = pyqtSignal(str, int)  # position, seconds remaining
    sampling_started = pyqtSignal(str)  # position
    point_recorded = pyqtSignal(object)  # CalibrationPoint
    calibration_completed = pyqtSignal(object)  # CalibrationMap
    calibration_failed = pyqtSignal(str)  # Error message

    def __init__(self, config: Optional[CalibrationConfig] = None):
        """
        Initialize calibration engine.

        Args:
            config: Countdown and sampling-window timing
        """
        super().__init__()

        self.config = config or CalibrationConfig()
        self.points: Dict[CalibrationPosition, CalibrationPoint] = {}
        self.mapping: Optional[CalibrationMap] = None

        self.active_position: Optional[CalibrationPosition] = None
        self.is_sampling = False
        self._collected: List[float] = []
        self._countdown_remaining = 0

        self.countdown_timer = QTimer()
        self.countdown_timer.setInterval(1000)
        self.countdown_timer.timeout.connect(self._on_countdown_tick)

        self.sampling_timer = QTimer()
        self.sampling_timer.setSingleShot(True)
        self.sampling_timer.timeout.connect(self._on_sampling_elapsed)

        logger.info("CalibrationEngine initialized")

    @property
    def is_calibrated(self) -> bool:
        return self.mapping is not None

    def begin_calibration(self, position) -> bool:
        """
        Start capture for one target.

        Args:
            position: CalibrationPosition or its string value

        Returns:
            True if capture started
        """
        position = CalibrationPosition(position)
        if self.active_position is not None:
            logger.warning(f"Calibration already running for {self.active_position.value}")
            return False

        self.active_position = position
        self.is_sampling = False
        self._collected = []
        self._countdown_remaining = self.config.countdown_seconds

        if self._countdown_remaining > 0:
            self.countdown_tick.emit(position.value, self._countdown_remaining)
            self.countdown_timer.start()
        else:
            self._start_sampling()

        logger.info(f"Calibration started for {position.value}")
        return True

    def _on_countdown_tick(self):
        self._countdown_remaining -= 1
        if self.active_position is None:
            self.countdown_timer.stop()
            return
        if self._countdown_remaining > 0:
            self.countdown_tick.emit(self.active_position.value, self._countdown_remaining)
            return
        self.countdown_timer.stop()
        self._start_sampling()

    def _start_sampling(self):
        self.is_sampling = True
        self._collected = []
        self.sampling_started.emit(self.active_position.value)
        self.sampling_timer.start(self.config.sampling_window_ms)
        logger.debug(f"Sampling window open for {self.active_position.value}")

    def _on_sampling_elapsed(self):
        if self.active_position is not None:
            self.finish_calibration(self.active_position)

    def add_raw_sample(self, raw: float) -> bool:
        """
        Collect one raw position while the sampling window is open.

        Returns:
            True if the value was collected
        """
        if not self.is_sampling:
            return False
        if not ValidationUtils.is_number(raw):
            logger.debug(f"Ignoring non-numeric calibration sample: {raw!r}")
            return False
        self._collected.append(float(raw))
        return True

    def finish_calibration(self, position) -> Optional[CalibrationPoint]:
        """
        Close the sampling window and record the mean as a reference point.

        Args:
            position: Target being finished

        Returns:
            The recorded point, or None if nothing was collected or the
            resulting calibration was rejected
        """
        position = CalibrationPosition(position)
        self.countdown_timer.stop()
        self.sampling_timer.stop()

        collected = self._collected
        self._collected = []
        self.is_sampling = False
        self.active_position = None

        if not collected:
            logger.warning(f"No samples collected for {position.value}; position left uncalibrated")
            self.calibration_failed.emit(f"No samples collected for {position.value}")
            return None

        point = CalibrationPoint(
            position=position,
            reference_value=sum(collected) / len(collected),
            sample_count=len(collected),
            timestamp=time.time()
        )

        candidate = dict(self.points)
        candidate[position] = point
        if len(candidate) == len(CalibrationPosition):
            try:
                mapping = CalibrationMap(
                    candidate[CalibrationPosition.LEFT].reference_value,
                    candidate[CalibrationPosition.CENTER].reference_value,
                    candidate[CalibrationPosition.RIGHT].reference_value,
                ).validate()
            except CalibrationError as e:
                logger.warning(f"Calibration rejected: {e}")
                self.calibration_failed.emit(str(e))
                return None
            self.points = candidate
            self.mapping = mapping
            self.point_recorded.emit(point)
            self.calibration_completed.emit(mapping)
            logger.info(f"Calibration complete: {mapping.to_dict()}")
            return point

        self.points = candidate
        self.point_recorded.emit(point)
        logger.info(f"Calibration point {position.value} = {point.reference_value:.4f} "
                    f"({point.sample_count} samples)")
        return point

    def cancel_calibration(self):
        """Abort the running capture without recording anything."""
        self.countdown_timer.stop()
        self.sampling_timer.stop()
        self.is_sampling = False
        self.active_position = None
        self._collected = []

    def set_calibration(self, left: float, center: float, right: float) -> CalibrationMap:
        """
        Install a known calibration (e.g. restored from a stored session).

        Raises:
            CalibrationError: If the points are not strictly ordered
        """
        mapping = CalibrationMap(left, center, right).validate()
        now = time.time()
        self.points = {
            CalibrationPosition.LEFT: CalibrationPoint(CalibrationPosition.LEFT, left, timestamp=now),
            CalibrationPosition.CENTER: CalibrationPoint(CalibrationPosition.CENTER, center, timestamp=now),
            CalibrationPosition.RIGHT: CalibrationPoint(CalibrationPosition.RIGHT, right, timestamp=now),
        }
        self.mapping = mapping
        self.calibration_completed.emit(mapping)
        return mapping

    def reset(self):
        """Forget all points and fall back to pass-through mapping."""
        self.cancel_calibration()
        self.points = {}
        self.mapping = None
        logger.info("Calibration reset")

    def calibrate(self, raw: float) -> float:
        """Map a raw position with the active calibration (or pass-through)."""
        if self.mapping is not None:
            return self.mapping.calibrate(raw)
        return passthrough_calibrate(raw)
