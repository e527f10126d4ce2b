"""
Replay of a stored sample series.

PlaybackController drives a virtual time cursor over a sorted sample
sequence: play / pause / stop, variable speed, seek and nearest-sample
lookup. Zoom selection restricts the visible range only; it never touches
the cursor or the playback state.
"""

import bisect
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Sequence
from PyQt6.QtCore import QObject, pyqtSignal, QTimer

from .samples import sort_samples

logger = logging.getLogger(__name__)


class PlaybackState(Enum):
    STOPPED = "stopped"
    PLAYING = "playing"
    PAUSED = "paused"


@dataclass
class PlaybackConfig:
    tick_ms: int = 100
    speed: float = 1.0
    min_speed: float = 0.1
    max_speed: float = 16.0

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'PlaybackConfig':
        return cls(
            tick_ms=config.get('tick_ms', 100),
            speed=config.get('speed', 1.0),
            min_speed=config.get('min_speed', 0.1),
            max_speed=config.get('max_speed', 16.0),
        )


@dataclass
class ZoomSelection:
    """Visible time range [start, end] in sample timestamps."""
    start: float
    end: float


class PlaybackController(QObject):
    """
    State machine over {stopped, playing, paused} with a time cursor.
    """

    position_changed = pyqtSignal(float)  # Cursor timestamp
    state_changed = pyqtSignal(str)  # PlaybackState value
    playback_finished = pyqtSignal()
    zoom_changed = pyqtSignal(object)  # ZoomSelection or None

    def __init__(self, samples: Sequence = (), config: Optional[PlaybackConfig] = None):
        """
        Initialize playback controller.

        Args:
            samples: Stored samples (sorted here if needed)
            config: Tick and speed configuration
        """
        super().__init__()

        self.config = config or PlaybackConfig()
        self.state = PlaybackState.STOPPED
        self.speed = self.config.speed
        self.zoom: Optional[ZoomSelection] = None
        self.samples: List = []
        self.timestamps: List[int] = []
        self.current_time: Optional[float] = None

        self.tick_timer = QTimer()
        self.tick_timer.setInterval(self.config.tick_ms)
        self.tick_timer.timeout.connect(self.advance)

        self.load(samples)

    def load(self, samples: Sequence):
        """Replace the sample series and reset to the first timestamp."""
        self._set_state(PlaybackState.STOPPED)
        self.samples = sort_samples(samples)
        self.timestamps = [s.timestamp for s in self.samples]
        self.current_time = float(self.timestamps[0]) if self.timestamps else None
        self.zoom = None
        logger.info(f"Playback loaded {len(self.samples)} samples")

    @property
    def first_timestamp(self) -> Optional[int]:
        return self.timestamps[0] if self.timestamps else None

    @property
    def last_timestamp(self) -> Optional[int]:
        return self.timestamps[-1] if self.timestamps else None

    @property
    def duration_ms(self) -> int:
        if not self.timestamps:
            return 0
        return self.timestamps[-1] - self.timestamps[0]

    def _set_state(self, state: PlaybackState):
        if state == PlaybackState.PLAYING:
            self.tick_timer.start()
        else:
            self.tick_timer.stop()
        if state != self.state:
            self.state = state
            self.state_changed.emit(state.value)

    def _clamp(self, timestamp: float) -> float:
        return max(float(self.timestamps[0]), min(float(self.timestamps[-1]), float(timestamp)))

    def play(self) -> bool:
        """
        Start or resume playback.

        Returns:
            True if the controller is now playing
        """
        if not self.samples:
            return False
        if self.state == PlaybackState.PLAYING:
            return True
        if self.current_time is None or self.current_time >= self.last_timestamp:
            self.current_time = float(self.first_timestamp)
            self.position_changed.emit(self.current_time)
        self._set_state(PlaybackState.PLAYING)
        return True

    def pause(self):
        if self.state == PlaybackState.PLAYING:
            self._set_state(PlaybackState.PAUSED)

    def stop(self):
        """Stop and rewind to the first sample."""
        self._set_state(PlaybackState.STOPPED)
        if self.samples:
            self.current_time = float(self.first_timestamp)
            self.position_changed.emit(self.current_time)

    def toggle(self):
        if self.state == PlaybackState.PLAYING:
            self.pause()
        else:
            self.play()

    def set_speed(self, speed: float) -> float:
        """Set the speed multiplier (clamped to the configured range)."""
        self.speed = max(self.config.min_speed, min(self.config.max_speed, float(speed)))
        return self.speed

    def advance(self) -> Optional[float]:
        """
        Move the cursor one tick forward (timer slot).

        Returns:
            New cursor position, or None when nothing is loaded
        """
        if not self.samples or self.state != PlaybackState.PLAYING:
            return self.current_time

        step = self.config.tick_ms * self.speed
        self.current_time = self._clamp(self.current_time + step)
        self.position_changed.emit(self.current_time)

        if self.current_time >= self.last_timestamp:
            self._set_state(PlaybackState.STOPPED)
            self.playback_finished.emit()
            logger.debug("Playback reached end of session")
        return self.current_time

    def seek(self, timestamp: float) -> Optional[float]:
        """Set the cursor directly; valid in any state."""
        if not self.samples:
            return None
        self.current_time = self._clamp(timestamp)
        self.position_changed.emit(self.current_time)
        return self.current_time

    def seek_fraction(self, fraction: float) -> Optional[float]:
        """Seek to a fraction [0, 1] of the session (scrubber position)."""
        if not self.samples:
            return None
        fraction = max(0.0, min(1.0, fraction))
        return self.seek(self.first_timestamp + fraction * self.duration_ms)

    def progress(self) -> float:
        if not self.samples or self.duration_ms == 0:
            return 0.0
        return (self.current_time - self.first_timestamp) / self.duration_ms

    def nearest_index(self, timestamp: float) -> Optional[int]:
        """
        Index of the sample closest in time; ties go to the earlier sample.
        """
        if not self.timestamps:
            return None
        i = bisect.bisect_left(self.timestamps, timestamp)
        if i == 0:
            return 0
        if i == len(self.timestamps):
            return bisect.bisect_left(self.timestamps, self.timestamps[-1])
        before, after = self.timestamps[i - 1], self.timestamps[i]
        if timestamp - before <= after - timestamp:
            # Equal timestamps before the cursor: return the first of the run
            return bisect.bisect_left(self.timestamps, before)
        return i

    def nearest_sample(self, timestamp: float):
        index = self.nearest_index(timestamp)
        return self.samples[index] if index is not None else None

    def current_sample(self):
        if self.current_time is None:
            return None
        return self.nearest_sample(self.current_time)

    def set_zoom(self, start: float, end: float) -> ZoomSelection:
        """Restrict the visible range; order of the bounds does not matter."""
        self.zoom = ZoomSelection(min(start, end), max(start, end))
        self.zoom_changed.emit(self.zoom)
        return self.zoom

    def reset_zoom(self):
        self.zoom = None
        self.zoom_changed.emit(None)

    def visible_samples(self) -> List:
        if self.zoom is None:
            return list(self.samples)
        lo = bisect.bisect_left(self.timestamps, self.zoom.start)
        hi = bisect.bisect_right(self.timestamps, self.zoom.end)
        return self.samples[lo:hi]
