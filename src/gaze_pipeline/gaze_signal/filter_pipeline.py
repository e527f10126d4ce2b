"""
Filter pipeline for calibrated gaze-position samples.

Batch mode (FilterPipeline) is pure and order-sensitive:
1. Confidence gate - low-confidence samples are frozen at the previous output
2. Neighbor-outlier rejection - spikes far from both neighbours are dropped
   from the smoothing input
3. Centered moving average with edge-shrinking window
4. Optional Kalman-style recursive smoothing
5. Clamp to [-1, 1]

Streaming mode (StreamingFilter) handles single live arrivals. It keeps only
the trailing k-1 retained raw values, so its window is trailing rather than
centered: output is emitted immediately instead of being delayed by half a
window. Neighbor rejection needs the next sample and is not applied there.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Sequence

import numpy as np

from .samples import Sample, FilteredSample
from gaze_pipeline.utils.validation import ValidationError

logger = logging.getLogger(__name__)

MIN_ADAPTIVE_WINDOW = 3
MAX_ADAPTIVE_WINDOW = 15


@dataclass
class FilterConfig:
    """Configuration parameters for the filter pipeline."""
    window_size: int = 5
    outlier_threshold: Optional[float] = 0.1  # None disables neighbor rejection
    min_confidence: float = 0.1
    outlier_quality_penalty: float = 0.5

    # Recursive smoothing
    use_kalman: bool = False
    process_noise: float = 0.01
    measurement_noise: float = 0.1

    # Velocity-driven window selection (batch mode only)
    adaptive_window: bool = False

    def __post_init__(self):
        if self.window_size < 1:
            raise ValueError(f"window_size must be >= 1, got {self.window_size}")

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'FilterConfig':
        return cls(
            window_size=config.get('window_size', 5),
            outlier_threshold=config.get('outlier_threshold', 0.1),
            min_confidence=config.get('min_confidence', 0.1),
            outlier_quality_penalty=config.get('outlier_quality_penalty', 0.5),
            use_kalman=config.get('use_kalman', False),
            process_noise=config.get('process_noise', 0.01),
            measurement_noise=config.get('measurement_noise', 0.1),
            adaptive_window=config.get('adaptive_window', False),
        )


def _clamp(value: float) -> float:
    return max(-1.0, min(1.0, float(value)))


def moving_average(values: Sequence[float], window_size: int = 5) -> np.ndarray:
    """
    Centered moving average whose window shrinks at the edges.

    For index i the window is [max(0, i - half), min(n, i + half + 1)).
    """
    data = np.asarray(values, dtype=float)
    n = data.size
    if n == 0:
        return data

    half = window_size // 2
    idx = np.arange(n)
    starts = np.maximum(0, idx - half)
    ends = np.minimum(n, idx + half + 1)
    csum = np.concatenate(([0.0], np.cumsum(data)))
    return (csum[ends] - csum[starts]) / (ends - starts)


class KalmanSmoother:
    """Scalar random-walk Kalman filter."""

    def __init__(self, process_noise: float = 0.01, measurement_noise: float = 0.1):
        self.process_noise = process_noise
        self.measurement_noise = measurement_noise
        self.state: Optional[float] = None
        self.uncertainty = 1.0

    def update(self, measurement: float) -> float:
        if self.state is None:
            self.state = float(measurement)
        predicted_uncertainty = self.uncertainty + self.process_noise
        gain = predicted_uncertainty / (predicted_uncertainty + self.measurement_noise)
        self.state = self.state + gain * (measurement - self.state)
        self.uncertainty = (1 - gain) * predicted_uncertainty
        return self.state

    def smooth(self, values: Sequence[float]) -> np.ndarray:
        self.reset()
        return np.array([self.update(v) for v in values], dtype=float)

    def reset(self):
        self.state = None
        self.uncertainty = 1.0


def adaptive_window_size(samples: Sequence[Sample]) -> int:
    """
    Pick a smoothing window from the mean absolute velocity.

    Slow, stable signals get wide windows; fast ones get narrow windows.
    """
    if len(samples) < 2:
        return MIN_ADAPTIVE_WINDOW

    ts = np.array([s.timestamp for s in samples], dtype=float)
    xs = np.array([s.raw_value for s in samples], dtype=float)
    dt = np.diff(ts)
    dx = np.abs(np.diff(xs))
    valid = dt > 0
    mean_velocity = float(np.mean(dx[valid] / dt[valid])) if valid.any() else 0.0

    window = int(np.floor(20.0 / (mean_velocity + 0.01)))
    return max(MIN_ADAPTIVE_WINDOW, min(MAX_ADAPTIVE_WINDOW, window))


class FilterPipeline:
    """
    Pure batch filter. One FilteredSample per input sample, same order.
    """

    def __init__(self, config: Optional[FilterConfig] = None):
        """
        Initialize filter pipeline.

        Args:
            config: Filter configuration
        """
        self.config = config or FilterConfig()

    def _is_gated(self, sample: Sample) -> bool:
        return sample.confidence is not None and sample.confidence < self.config.min_confidence

    def _reject_neighbor_outliers(self, samples: Sequence[Sample], candidates: List[int]) -> set:
        threshold = self.config.outlier_threshold
        rejected = set()
        if threshold is None or len(candidates) < 3:
            return rejected

        for j in range(1, len(candidates) - 1):
            prev_x = samples[candidates[j - 1]].raw_value
            curr_x = samples[candidates[j]].raw_value
            next_x = samples[candidates[j + 1]].raw_value
            if abs(curr_x - prev_x) >= threshold and abs(curr_x - next_x) >= threshold:
                rejected.add(candidates[j])
        return rejected

    def process(self, samples: Sequence[Sample]) -> List[FilteredSample]:
        """
        Filter a batch of samples.

        Args:
            samples: Samples in ascending timestamp order

        Returns:
            Filtered samples, same count and order as the input

        Raises:
            ValidationError: If the batch is not sorted by timestamp
        """
        n = len(samples)
        if n == 0:
            return []

        for i in range(1, n):
            if samples[i].timestamp < samples[i - 1].timestamp:
                raise ValidationError(
                    f"Filter input must be sorted: ts {samples[i].timestamp} follows {samples[i - 1].timestamp}"
                )

        gated = [self._is_gated(s) for s in samples]
        candidates = [i for i in range(n) if not gated[i]]
        rejected = self._reject_neighbor_outliers(samples, candidates)
        retained = [i for i in candidates if i not in rejected]

        window_size = self.config.window_size
        if self.config.adaptive_window:
            window_size = adaptive_window_size([samples[i] for i in retained])

        smoothed = moving_average([samples[i].raw_value for i in retained], window_size)
        if self.config.use_kalman and smoothed.size:
            smoothed = KalmanSmoother(self.config.process_noise,
                                      self.config.measurement_noise).smooth(smoothed)
        smoothed_by_index = {idx: smoothed[pos] for pos, idx in enumerate(retained)}

        output = []
        previous: Optional[float] = None
        for i, sample in enumerate(samples):
            quality = sample.confidence if sample.confidence is not None else 1.0
            if i in smoothed_by_index:
                filtered = _clamp(smoothed_by_index[i])
                is_outlier = False
            else:
                filtered = previous if previous is not None else _clamp(sample.raw_value)
                is_outlier = True
                if i in rejected:
                    quality *= self.config.outlier_quality_penalty

            output.append(FilteredSample.from_sample(
                sample, filtered_value=filtered, is_outlier=is_outlier, quality=quality
            ))
            previous = filtered

        logger.debug(f"Filtered batch of {n}: {sum(gated)} gated, {len(rejected)} rejected, "
                     f"window={window_size}")
        return output


class StreamingFilter:
    """
    Causal single-sample filter for live display.

    The moving average uses the current value plus the last k-1 retained raw
    values, i.e. a trailing window. This shifts the effective window behind the
    centered batch result for the most recent samples.
    """

    def __init__(self, config: Optional[FilterConfig] = None):
        self.config = config or FilterConfig()
        self.history = deque(maxlen=max(0, self.config.window_size - 1))
        self.kalman = KalmanSmoother(self.config.process_noise, self.config.measurement_noise)
        self.last_output: Optional[float] = None

    def process(self, sample: Sample) -> FilteredSample:
        """
        Filter one live sample.

        Args:
            sample: Newly arrived sample

        Returns:
            Filtered sample for display
        """
        if sample.confidence is not None and sample.confidence < self.config.min_confidence:
            frozen = self.last_output if self.last_output is not None else _clamp(sample.raw_value)
            self.last_output = frozen
            return FilteredSample.from_sample(sample, filtered_value=frozen, is_outlier=True)

        window = list(self.history) + [sample.raw_value]
        value = sum(window) / len(window)
        if self.config.use_kalman:
            value = self.kalman.update(value)

        filtered = _clamp(value)
        if self.history.maxlen:
            self.history.append(sample.raw_value)
        self.last_output = filtered
        return FilteredSample.from_sample(sample, filtered_value=filtered)

    def reset(self):
        """Clear trailing history (e.g. when a new recording starts)."""
        self.history.clear()
        self.kalman.reset()
        self.last_output = None
