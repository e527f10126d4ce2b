"""
Validation and Error Handling Utilities
Exception taxonomy, ingestion-boundary validation and logging setup for the
gaze signal pipeline.
"""

import logging
import math
from numbers import Real
from typing import Any, Tuple, Optional


class GazeSignalError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(GazeSignalError):
    """Malformed sample or point rejected at an ingestion boundary."""


class CalibrationError(GazeSignalError):
    """Calibration reference points are not strictly ordered."""


class TransmissionError(GazeSignalError):
    """A persistence call failed during the final flush."""


class NotFoundError(GazeSignalError):
    """Session or sample does not exist."""


class ConflictError(GazeSignalError):
    """Operation conflicts with the session lifecycle."""


class ValidationUtils:
    """Centralized validation utilities"""

    @staticmethod
    def is_number(value: Any) -> bool:
        """True for finite real numbers (bools excluded)."""
        if isinstance(value, bool) or not isinstance(value, Real):
            return False
        return math.isfinite(float(value))

    @staticmethod
    def validate_numeric_range(value: Any, min_val: float, max_val: float,
                               name: str, context="operation") -> Tuple[bool, Optional[float]]:
        """Validate numeric values are within acceptable ranges"""
        if not ValidationUtils.is_number(value):
            logging.error(f"{context}: Invalid {name} value: {value!r}")
            return False, None
        value = float(value)
        if not (min_val <= value <= max_val):
            logging.error(f"{context}: {name} value {value} outside range [{min_val}, {max_val}]")
            return False, None
        return True, value

    @staticmethod
    def validate_sample_fields(timestamp: Any, value: Any, confidence: Any = None,
                               context: str = "ingestion") -> Tuple[int, float, Optional[float]]:
        """
        Validate the fields of one detector sample.

        Args:
            timestamp: Sample timestamp in milliseconds, must be a positive integer
            value: Position value, must be a finite number
            confidence: Optional confidence in [0, 1]
            context: Label used in error messages

        Returns:
            Normalized (timestamp, value, confidence) tuple

        Raises:
            ValidationError: If any field is malformed
        """
        if isinstance(timestamp, bool) or not isinstance(timestamp, Real) or not math.isfinite(timestamp):
            raise ValidationError(f"{context}: timestamp must be numeric, got {timestamp!r}")
        if timestamp <= 0 or int(timestamp) != timestamp:
            raise ValidationError(f"{context}: timestamp must be a positive integer, got {timestamp!r}")

        if not ValidationUtils.is_number(value):
            raise ValidationError(f"{context}: position must be numeric, got {value!r}")

        if confidence is not None:
            if not ValidationUtils.is_number(confidence):
                raise ValidationError(f"{context}: confidence must be numeric, got {confidence!r}")
            if not (0.0 <= confidence <= 1.0):
                raise ValidationError(f"{context}: confidence {confidence} outside [0, 1]")
            confidence = float(confidence)

        return int(timestamp), float(value), confidence


class ErrorHandlingUtils:
    """Centralized error handling utilities"""

    @staticmethod
    def log_performance_warning(operation: str, duration: float, threshold: float = 1.0):
        """Log performance warnings for slow operations"""
        if duration > threshold:
            logging.warning(f"Performance warning: {operation} took {duration:.2f}s (threshold: {threshold:.2f}s)")

    @staticmethod
    def create_error_context(operation: str, **kwargs) -> str:
        """Create detailed error context for logging"""
        context_parts = [operation]
        for key, value in kwargs.items():
            context_parts.append(f"{key}={value}")
        return " | ".join(context_parts)


def setup_logging(log_file: Optional[str] = 'gaze_pipeline.log', console_level=logging.WARNING):
    """Configure logging with file and console handlers"""
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)

    # Clear existing handlers to prevent duplicates
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    detailed_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    )
    simple_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    )

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)
        logger.addHandler(file_handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(simple_formatter)
    logger.addHandler(console_handler)

    return logger
