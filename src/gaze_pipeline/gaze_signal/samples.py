"""
Sample data structures for the gaze signal pipeline.

A `Sample` is what the detector produces (after calibration); a
`FilteredSample` is the one-to-one output of the filter pipeline.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Dict, Any

from gaze_pipeline.utils.validation import ValidationUtils


@dataclass(frozen=True)
class Sample:
    """Single gaze-position sample."""
    timestamp: int  # Milliseconds, non-decreasing within a session
    raw_value: float
    confidence: Optional[float] = None  # 0-1, None when the detector gives none
    seq: Optional[int] = None  # Ingest order within the session

    @classmethod
    def create(cls, timestamp, raw_value, confidence=None) -> 'Sample':
        """Validate fields and build a sample (raises ValidationError)."""
        ts, value, conf = ValidationUtils.validate_sample_fields(timestamp, raw_value, confidence)
        return cls(ts, value, conf)


@dataclass(frozen=True)
class FilteredSample:
    """Sample plus the filter pipeline's verdict."""
    timestamp: int
    raw_value: float
    confidence: Optional[float]
    filtered_value: Optional[float]
    is_outlier: bool = False
    quality: float = 1.0
    is_placeholder: bool = False  # Live-window only, never persisted
    seq: Optional[int] = None

    @property
    def value(self) -> float:
        """Filtered value when present, raw value otherwise."""
        return self.filtered_value if self.filtered_value is not None else self.raw_value

    @classmethod
    def from_sample(cls, sample: Sample, filtered_value: Optional[float] = None,
                    is_outlier: bool = False, quality: Optional[float] = None) -> 'FilteredSample':
        if quality is None:
            quality = sample.confidence if sample.confidence is not None else 1.0
        return cls(
            timestamp=sample.timestamp,
            raw_value=sample.raw_value,
            confidence=sample.confidence,
            filtered_value=filtered_value,
            is_outlier=is_outlier,
            quality=quality,
            seq=sample.seq,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'ts': self.timestamp,
            'xRaw': self.raw_value,
            'xFiltered': self.filtered_value,
            'confidence': self.confidence,
        }


def sort_samples(samples: Iterable) -> List:
    """Stable ascending-timestamp sort; equal timestamps keep arrival order."""
    return sorted(samples, key=lambda s: s.timestamp)
