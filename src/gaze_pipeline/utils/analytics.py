"""
Gaze signal analytics.

Velocity, saccade and fixation detection and summary statistics computed
from an ordered sample sequence. Everything here is a pure function of its
input: results are views, recomputable at any time, never authoritative.

Position units are normalized [-1, 1]; velocities are units per millisecond.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Any, List, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class AnalyticsConfig:
    """Detection thresholds, overridable per call."""
    saccade_threshold: float = 0.05
    fixation_threshold: float = 0.01
    min_fixation_duration_ms: float = 100

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'AnalyticsConfig':
        return cls(
            saccade_threshold=config.get('saccade_threshold', 0.05),
            fixation_threshold=config.get('fixation_threshold', 0.01),
            min_fixation_duration_ms=config.get('min_fixation_duration_ms', 100),
        )


@dataclass
class VelocityPoint:
    """Velocity of the transition ending at `timestamp`."""
    timestamp: int
    velocity: float
    start_timestamp: int = 0


@dataclass
class Fixation:
    start: int
    end: int
    duration: int  # Milliseconds


@dataclass
class AnalyticsResult:
    """Summary of one sample sequence."""
    total_points: int = 0
    duration: float = 0.0  # Seconds
    mean_velocity: float = 0.0
    max_velocity: float = 0.0
    saccade_frequency: float = 0.0  # Saccades per second
    mean_confidence: float = 0.0
    velocities: List[VelocityPoint] = field(default_factory=list)
    saccades: List[int] = field(default_factory=list)
    fixations: List[Fixation] = field(default_factory=list)


def _position(sample) -> float:
    filtered = getattr(sample, 'filtered_value', None)
    return filtered if filtered is not None else sample.raw_value


def calculate_velocity(samples: Sequence) -> List[VelocityPoint]:
    """
    Absolute velocity between consecutive samples.

    Transitions with a non-positive time step are skipped, not zero-filled.
    """
    if len(samples) < 2:
        return []

    ts = np.array([s.timestamp for s in samples], dtype=np.int64)
    xs = np.array([_position(s) for s in samples], dtype=float)
    dt = np.diff(ts)
    dx = np.abs(np.diff(xs))
    valid = np.nonzero(dt > 0)[0]
    speeds = dx[valid] / dt[valid]

    return [
        VelocityPoint(timestamp=int(ts[i + 1]), velocity=float(v), start_timestamp=int(ts[i]))
        for i, v in zip(valid, speeds)
    ]


def detect_saccades(velocities: Sequence[VelocityPoint], threshold: float = 0.05) -> List[int]:
    """Timestamps of transitions faster than the threshold."""
    return [v.timestamp for v in velocities if v.velocity > threshold]


def saccade_frequency(saccades: Sequence[int], duration_seconds: float) -> float:
    if duration_seconds <= 0:
        return 0.0
    return len(saccades) / duration_seconds


def detect_fixations(samples: Sequence, velocity_threshold: float = 0.01,
                     min_duration_ms: float = 100) -> List[Fixation]:
    """
    Find maximal runs of slow transitions lasting at least min_duration_ms.

    A run in progress at the end of the sequence is included when it is
    long enough.
    """
    fixations = []
    run_start = None
    run_end = None

    def close_run():
        if run_start is not None and run_end - run_start >= min_duration_ms:
            fixations.append(Fixation(start=run_start, end=run_end, duration=run_end - run_start))

    for point in calculate_velocity(samples):
        if point.velocity < velocity_threshold:
            if run_start is None:
                run_start = point.start_timestamp
            run_end = point.timestamp
        else:
            close_run()
            run_start = None
            run_end = None

    close_run()
    return fixations


def _mean_confidence(samples: Sequence) -> float:
    confidences = [s.confidence for s in samples if s.confidence is not None]
    return float(np.mean(confidences)) if confidences else 0.0


def analyze_samples(samples: Sequence, config: Optional[AnalyticsConfig] = None,
                    **overrides) -> AnalyticsResult:
    """
    Compute the full analytics summary.

    Args:
        samples: Samples in ascending timestamp order
        config: Thresholds (defaults when None)
        **overrides: Individual AnalyticsConfig fields to override for this call

    Returns:
        AnalyticsResult, all-zero for an empty sequence
    """
    config = replace(config or AnalyticsConfig(), **overrides)
    if not samples:
        return AnalyticsResult()

    duration = (samples[-1].timestamp - samples[0].timestamp) / 1000.0
    velocities = calculate_velocity(samples)
    speeds = np.array([v.velocity for v in velocities], dtype=float)
    saccades = detect_saccades(velocities, config.saccade_threshold)

    result = AnalyticsResult(
        total_points=len(samples),
        duration=duration,
        mean_velocity=float(speeds.mean()) if speeds.size else 0.0,
        max_velocity=float(speeds.max()) if speeds.size else 0.0,
        saccade_frequency=saccade_frequency(saccades, duration),
        mean_confidence=_mean_confidence(samples),
        velocities=velocities,
        saccades=saccades,
        fixations=detect_fixations(samples, config.fixation_threshold, config.min_fixation_duration_ms),
    )

    logger.debug(f"Analyzed {result.total_points} points: {len(saccades)} saccades, "
                 f"{len(result.fixations)} fixations over {duration:.2f}s")
    return result


def generate_summary(result: AnalyticsResult) -> Dict[str, str]:
    """Human-readable summary strings for display."""
    return {
        'Total Points': str(result.total_points),
        'Duration': f"{result.duration:.2f}s",
        'Avg Velocity': f"{result.mean_velocity * 1000:.2f} units/s",
        'Max Velocity': f"{result.max_velocity * 1000:.2f} units/s",
        'Saccade Frequency': f"{result.saccade_frequency:.2f} saccades/s",
        'Fixations': str(len(result.fixations)),
        'Avg Confidence': f"{result.mean_confidence * 100:.1f}%",
    }


def session_statistics(samples: Sequence) -> Dict[str, Any]:
    """
    Value ranges and time span of a stored session.

    Returns:
        Dictionary with totalPoints, duration (s), timeRange and raw/filtered
        min/max/average (None when there is nothing to aggregate)
    """
    def describe(values):
        if not values:
            return {'min': None, 'max': None, 'average': None}
        arr = np.asarray(values, dtype=float)
        return {'min': float(arr.min()), 'max': float(arr.max()), 'average': float(arr.mean())}

    if not samples:
        return {
            'totalPoints': 0,
            'duration': 0.0,
            'timeRange': {'start': None, 'end': None},
            'statistics': {'raw': describe([]), 'filtered': describe([])},
        }

    start, end = samples[0].timestamp, samples[-1].timestamp
    filtered = [s.filtered_value for s in samples if getattr(s, 'filtered_value', None) is not None]
    return {
        'totalPoints': len(samples),
        'duration': round((end - start) / 1000.0, 2),
        'timeRange': {'start': start, 'end': end},
        'statistics': {
            'raw': describe([s.raw_value for s in samples]),
            'filtered': describe(filtered),
        },
    }


def analyze_session(store, session_id: str, smoothing: bool = True, filter_config=None,
                    config: Optional[AnalyticsConfig] = None, **overrides) -> Dict[str, Any]:
    """
    Analyze a persisted session, optionally re-smoothing the raw values.

    Args:
        store: SessionStore holding the session
        session_id: Session to analyze
        smoothing: Re-run the batch filter over stored raw values first
        filter_config: FilterConfig used when smoothing
        config: Analytics thresholds
        **overrides: Per-call threshold overrides

    Returns:
        Dictionary with session metadata, analytics result, summary strings
    """
    from gaze_pipeline.gaze_signal.filter_pipeline import FilterPipeline
    from gaze_pipeline.gaze_signal.samples import Sample

    session = store.get_session(session_id)
    samples = store.read_samples(session_id)
    processed = samples
    if smoothing and samples:
        raw = [Sample(s.timestamp, s.raw_value, s.confidence) for s in samples]
        processed = FilterPipeline(filter_config).process(raw)

    result = analyze_samples(processed, config, **overrides)
    return {
        'session': session.to_dict(),
        'analytics': result,
        'summary': generate_summary(result),
        'processing': {
            'smoothing': smoothing,
            'originalPoints': len(samples),
            'processedPoints': len(processed),
        },
    }
