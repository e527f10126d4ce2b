#!/usr/bin/env python3
"""
Tests for the batch and streaming filters.

Covers:
- Length/range guarantees of the batch pipeline
- Centered moving average with shrinking edges
- Neighbor-outlier rejection and the confidence gate
- Kalman smoothing and adaptive window selection
- Trailing-window streaming filter
"""

import sys
import os
import random

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

import numpy as np

from gaze_pipeline.gaze_signal.samples import Sample
from gaze_pipeline.gaze_signal.filter_pipeline import (
    FilterPipeline, StreamingFilter, FilterConfig, KalmanSmoother,
    moving_average, adaptive_window_size
)
from gaze_pipeline.utils.validation import ValidationError


def make_samples(values, step=100, start=0, confidence=1.0):
    return [Sample(start + i * step, v, confidence) for i, v in enumerate(values)]


def test_output_length_and_range():
    """Output has one sample per input and every value lies in [-1, 1]."""
    print("Testing filter output invariants...")
    rng = random.Random(7)
    configs = [
        FilterConfig(),
        FilterConfig(window_size=1, outlier_threshold=None),
        FilterConfig(window_size=9, use_kalman=True),
        FilterConfig(adaptive_window=True, outlier_threshold=0.3),
    ]
    for n in (0, 1, 2, 3, 17, 200):
        samples = [
            Sample(i * 33, rng.uniform(-3.0, 3.0), rng.choice([None, 0.05, 0.5, 1.0]))
            for i in range(n)
        ]
        for config in configs:
            output = FilterPipeline(config).process(samples)
            assert len(output) == n
            assert all(-1.0 <= s.filtered_value <= 1.0 for s in output)
            assert [s.timestamp for s in output] == [s.timestamp for s in samples]
            assert [s.raw_value for s in output] == [s.raw_value for s in samples]
    print("✓ Length preserved, values clamped, raw values untouched")


def test_constant_sequence_unchanged():
    print("Testing moving average of a constant...")
    for window in (1, 2, 3, 5, 8):
        smoothed = moving_average([0.3] * 11, window)
        assert np.allclose(smoothed, 0.3)

    output = FilterPipeline(FilterConfig(window_size=5)).process(make_samples([-0.4] * 10))
    assert all(abs(s.filtered_value + 0.4) < 1e-12 for s in output)
    print("✓ Constant input stays constant")


def test_monotonic_sequence_with_large_threshold():
    print("Testing outlier rejection on a monotonic ramp...")
    values = [round(-0.9 + 0.1 * i, 10) for i in range(19)]
    config = FilterConfig(window_size=1, outlier_threshold=1e6)
    output = FilterPipeline(config).process(make_samples(values))
    assert not any(s.is_outlier for s in output)
    assert np.allclose([s.filtered_value for s in output], values, atol=1e-12)
    print("✓ Nothing rejected, sequence unchanged")


def test_scenario_window_three():
    print("Testing k=3 smoothing scenario...")
    samples = make_samples([0.0, 0.5, 1.0, 0.52, 0.48])
    config = FilterConfig(window_size=3, outlier_threshold=None)
    output = FilterPipeline(config).process(samples)
    assert [round(s.filtered_value, 2) for s in output] == [0.25, 0.5, 0.67, 0.67, 0.5]
    print("✓ Edge windows shrink as expected")


def test_moving_average_edges():
    smoothed = moving_average([1.0, 2.0, 3.0, 4.0], 3)
    assert np.allclose(smoothed, [1.5, 2.0, 3.0, 3.5])
    assert moving_average([], 5).size == 0


def test_neighbor_outlier_rejected():
    print("Testing spike rejection...")
    samples = make_samples([0.0, 0.01, 0.8, 0.0, 0.01])
    output = FilterPipeline(FilterConfig(window_size=3, outlier_threshold=0.1)).process(samples)

    spike = output[2]
    assert spike.is_outlier
    assert spike.raw_value == 0.8
    assert spike.quality == 0.5
    assert spike.filtered_value == output[1].filtered_value
    assert not any(s.is_outlier for i, s in enumerate(output) if i != 2)
    assert all(abs(s.filtered_value) < 0.02 for s in output)
    print("✓ Spike excluded from smoothing, held at previous output")


def test_one_sided_jump_not_rejected():
    samples = make_samples([0.0, 0.0, 0.6, 0.6, 0.6])
    output = FilterPipeline(FilterConfig(window_size=1, outlier_threshold=0.1)).process(samples)
    assert not any(s.is_outlier for s in output)


def test_low_confidence_frozen():
    print("Testing confidence gate...")
    samples = [
        Sample(100, 0.2, 0.9),
        Sample(200, 0.9, 0.05),
        Sample(300, 0.2, 0.9),
    ]
    output = FilterPipeline(FilterConfig(window_size=3)).process(samples)
    assert output[1].is_outlier
    assert output[1].filtered_value == output[0].filtered_value
    assert abs(output[0].filtered_value - 0.2) < 1e-12
    assert output[1].quality == 0.05
    assert output[0].quality == 0.9

    # A gated first sample has no previous output and falls back to its raw value
    first = FilterPipeline().process([Sample(100, 0.4, 0.0), Sample(200, 0.1, 1.0)])
    assert first[0].filtered_value == 0.4
    print("✓ Gated samples frozen at the previous output")


def test_missing_confidence_counts_as_full():
    output = FilterPipeline().process(make_samples([0.1, 0.1], confidence=None))
    assert all(s.quality == 1.0 and s.confidence is None for s in output)


def test_unsorted_input_rejected():
    samples = [Sample(200, 0.1), Sample(100, 0.2)]
    try:
        FilterPipeline().process(samples)
    except ValidationError:
        return
    raise AssertionError("Expected ValidationError for unsorted input")


def test_equal_timestamps_accepted():
    output = FilterPipeline().process([Sample(100, 0.1), Sample(100, 0.2), Sample(200, 0.3)])
    assert len(output) == 3


def test_kalman_smoothing():
    print("Testing Kalman smoother...")
    smoother = KalmanSmoother(process_noise=0.01, measurement_noise=0.1)
    assert np.allclose(smoother.smooth([0.5] * 20), 0.5)

    smoothed = smoother.smooth([0.0] * 5 + [1.0] * 5)
    assert 0.0 < smoothed[5] < 1.0
    assert np.all(np.diff(smoothed[5:]) > 0)

    config = FilterConfig(window_size=1, outlier_threshold=None, use_kalman=True)
    output = FilterPipeline(config).process(make_samples([0.0, 1.0, 1.0]))
    assert output[0].filtered_value == 0.0
    assert 0.0 < output[1].filtered_value < 1.0
    print("✓ Recursive smoothing lags step changes")


def test_adaptive_window_size():
    assert adaptive_window_size([]) == 3
    assert adaptive_window_size(make_samples([0.2] * 10)) == 15
    fast = [Sample(i, 1.0 if i % 2 else -1.0) for i in range(1, 12)]
    assert adaptive_window_size(fast) == 9


def test_streaming_trailing_window():
    print("Testing streaming filter...")
    streaming = StreamingFilter(FilterConfig(window_size=3))
    outputs = [streaming.process(s).filtered_value for s in make_samples([0.0, 0.5, 1.0, 1.0])]
    assert outputs[0] == 0.0
    assert abs(outputs[1] - 0.25) < 1e-12
    assert abs(outputs[2] - 0.5) < 1e-12
    assert abs(outputs[3] - 2.5 / 3) < 1e-12

    gated = streaming.process(Sample(500, -1.0, 0.01))
    assert gated.is_outlier
    assert gated.filtered_value == outputs[3]

    streaming.reset()
    assert streaming.process(Sample(600, 0.4)).filtered_value == 0.4
    print("✓ Trailing window emitted without delay")


def test_streaming_window_of_one():
    streaming = StreamingFilter(FilterConfig(window_size=1))
    assert streaming.process(Sample(1, 0.3)).filtered_value == 0.3
    assert streaming.process(Sample(2, 2.0)).filtered_value == 1.0


def test_invalid_window_size():
    try:
        FilterConfig(window_size=0)
    except ValueError:
        return
    raise AssertionError("Expected ValueError for window_size=0")


def test_config_from_dict():
    config = FilterConfig.from_dict({'window_size': 7, 'outlier_threshold': None, 'use_kalman': True})
    assert config.window_size == 7
    assert config.outlier_threshold is None
    assert config.use_kalman
    assert config.min_confidence == 0.1


def run_all_tests():
    """Run all filter tests."""
    print("=" * 50)
    print("FILTER PIPELINE TESTS")
    print("=" * 50)

    tests = [
        test_output_length_and_range,
        test_constant_sequence_unchanged,
        test_monotonic_sequence_with_large_threshold,
        test_scenario_window_three,
        test_moving_average_edges,
        test_neighbor_outlier_rejected,
        test_one_sided_jump_not_rejected,
        test_low_confidence_frozen,
        test_missing_confidence_counts_as_full,
        test_unsorted_input_rejected,
        test_equal_timestamps_accepted,
        test_kalman_smoothing,
        test_adaptive_window_size,
        test_streaming_trailing_window,
        test_streaming_window_of_one,
        test_invalid_window_size,
        test_config_from_dict,
    ]

    passed = 0
    for test_func in tests:
        print(f"\n{test_func.__name__}:")
        try:
            test_func()
            passed += 1
        except Exception as e:
            print(f"✗ {test_func.__name__} failed: {e!r}")

    print("\n" + "=" * 50)
    print(f"RESULTS: {passed}/{len(tests)} tests passed")
    print("=" * 50)
    return passed == len(tests)


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
