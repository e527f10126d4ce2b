"""
Gaze Signal Pipeline Configuration Module
Contains application constants and default settings for every pipeline stage.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

# PIPELINE DEFAULTS
PIPELINE_CONFIG = {
    # Three-point calibration capture
    'calibration': {
        'countdown_seconds': 3,
        'sampling_window_ms': 2000,
    },

    # Per-sample denoising
    'filter': {
        'window_size': 5,
        'outlier_threshold': 0.1,
        'min_confidence': 0.1,
        'outlier_quality_penalty': 0.5,
        'use_kalman': False,
        'process_noise': 0.01,
        'measurement_noise': 0.1,
        'adaptive_window': False,
    },

    # Live display window
    'live_window': {
        'window_ms': 15000,
        'max_samples': 5000,
        'stall_ms': 2000,
        'check_interval_ms': 100,
        'placeholder_value': 0.0,
        'placeholder_confidence': 0.0,
    },

    # Persistence upload
    'transmission': {
        'flush_interval_ms': 200,
    },

    # Recording orchestration
    'recorder': {
        'dispatch_interval_ms': 200,
        'analytics_interval_ms': 1000,
        'worker_threads': 1,
        'sampling_rate_hz': 30,
    },

    # Derived analytics
    'analytics': {
        'saccade_threshold': 0.05,
        'fixation_threshold': 0.01,
        'min_fixation_duration_ms': 100,
    },

    # Replay
    'playback': {
        'tick_ms': 100,
        'speed': 1.0,
        'min_speed': 0.1,
        'max_speed': 16.0,
    },

    # Persistence tier
    'storage': {
        'default_page_size': 1000,
        'max_page_size': 10000,
    },
}

# Application constants
APP_NAME = "Gaze Signal Pipeline"
APP_VERSION = "1.0.0"
SUPPORTED_EXPORT_FORMATS = ['.csv', '.json']
CSV_COLUMNS = ['timestamp', 'xRaw', 'xFiltered', 'confidence']
POINT_FORMATS = ('raw', 'filtered', 'both')


def get_section(name: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Return one section of a pipeline config (defaults when absent)."""
    source = config if config is not None else PIPELINE_CONFIG
    return dict(source.get(name, PIPELINE_CONFIG.get(name, {})))


def load_pipeline_config(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load pipeline configuration, merging JSON overrides onto the defaults.

    Args:
        path: Optional path to a JSON file with per-section overrides

    Returns:
        Complete configuration dictionary
    """
    config = copy.deepcopy(PIPELINE_CONFIG)
    if not path:
        return config

    config_path = Path(path)
    if not config_path.exists():
        logger.warning(f"Config file not found, using defaults: {path}")
        return config

    with open(config_path, 'r', encoding='utf-8') as f:
        overrides = json.load(f)

    for section, values in overrides.items():
        if section not in config:
            logger.warning(f"Ignoring unknown config section: {section}")
            continue
        if not isinstance(values, dict):
            logger.warning(f"Config section {section} must be an object")
            continue
        config[section].update(values)

    logger.info(f"Pipeline configuration loaded from {path}")
    return config
