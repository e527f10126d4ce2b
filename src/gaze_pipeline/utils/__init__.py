"""
Utility modules for the gaze signal pipeline.

Analytics over sample sequences, validation and error taxonomy.
"""

from .analytics import (
    AnalyticsConfig, AnalyticsResult, VelocityPoint, Fixation,
    calculate_velocity, detect_saccades, detect_fixations,
    analyze_samples, analyze_session, generate_summary, session_statistics
)
from .validation import (
    GazeSignalError, ValidationError, CalibrationError, TransmissionError,
    NotFoundError, ConflictError, ValidationUtils, ErrorHandlingUtils, setup_logging
)

__all__ = [
    # Analytics
    'AnalyticsConfig', 'AnalyticsResult', 'VelocityPoint', 'Fixation',
    'calculate_velocity', 'detect_saccades', 'detect_fixations',
    'analyze_samples', 'analyze_session', 'generate_summary', 'session_statistics',
    # Validation and errors
    'GazeSignalError', 'ValidationError', 'CalibrationError', 'TransmissionError',
    'NotFoundError', 'ConflictError', 'ValidationUtils', 'ErrorHandlingUtils', 'setup_logging'
]
