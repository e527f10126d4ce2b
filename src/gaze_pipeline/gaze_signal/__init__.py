"""
Gaze signal module.
Provides calibration, filtering, live display buffering, transmission and
playback of horizontal gaze-position signals.

Recording: position source -> calibration -> filter -> live window / store
Replay: stored samples -> playback controller
"""

from .samples import Sample, FilteredSample, sort_samples
from .calibration import (
    CalibrationEngine, CalibrationMap, CalibrationPoint, CalibrationPosition,
    CalibrationConfig, passthrough_calibrate
)
from .filter_pipeline import FilterPipeline, StreamingFilter, FilterConfig, KalmanSmoother, moving_average
from .live_buffer import LiveWindowBuffer, LiveWindowConfig
from .transmission import TransmissionBatcher, TransmissionConfig, TransmissionStats
from .position_source import PositionSource, MockPositionSource, SampleCallback
from .playback import PlaybackController, PlaybackConfig, PlaybackState, ZoomSelection
from .recorder import SessionRecorder, RecorderConfig, RecordingStats

__all__ = [
    # Data
    'Sample', 'FilteredSample', 'sort_samples',
    # Calibration
    'CalibrationEngine', 'CalibrationMap', 'CalibrationPoint', 'CalibrationPosition',
    'CalibrationConfig', 'passthrough_calibrate',
    # Filtering
    'FilterPipeline', 'StreamingFilter', 'FilterConfig', 'KalmanSmoother', 'moving_average',
    # Recording
    'LiveWindowBuffer', 'LiveWindowConfig',
    'TransmissionBatcher', 'TransmissionConfig', 'TransmissionStats',
    'PositionSource', 'MockPositionSource', 'SampleCallback',
    'SessionRecorder', 'RecorderConfig', 'RecordingStats',
    # Replay
    'PlaybackController', 'PlaybackConfig', 'PlaybackState', 'ZoomSelection'
]
