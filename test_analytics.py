#!/usr/bin/env python3
"""
Tests for velocity, saccade and fixation analytics.
"""

import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from gaze_pipeline.core.session_store import InMemorySessionStore
from gaze_pipeline.gaze_signal.samples import Sample, FilteredSample
from gaze_pipeline.gaze_signal.filter_pipeline import FilterConfig
from gaze_pipeline.utils.analytics import (
    AnalyticsConfig, AnalyticsResult, calculate_velocity, detect_saccades,
    detect_fixations, analyze_samples, analyze_session, generate_summary, saccade_frequency
)


def make_samples(values, step=100, start=0, confidence=1.0):
    return [Sample(start + i * step, v, confidence) for i, v in enumerate(values)]


def test_velocity_scenario():
    print("Testing velocity computation...")
    samples = make_samples([0.0, 0.5, 1.0, 0.52, 0.48])
    velocities = calculate_velocity(samples)
    assert len(velocities) == 4
    assert abs(velocities[0].velocity - 0.005) < 1e-12
    assert velocities[0].timestamp == 100
    assert velocities[0].start_timestamp == 0
    assert abs(velocities[2].velocity - 0.0048) < 1e-12
    print("✓ |0.5 - 0.0| / 100 = 0.005")


def test_velocity_uses_filtered_value():
    samples = [
        FilteredSample(timestamp=100, raw_value=0.0, confidence=1.0, filtered_value=0.2),
        FilteredSample(timestamp=200, raw_value=0.9, confidence=1.0, filtered_value=0.3),
    ]
    assert abs(calculate_velocity(samples)[0].velocity - 0.001) < 1e-12


def test_zero_time_step_skipped():
    samples = [Sample(100, 0.0), Sample(100, 0.5), Sample(200, 0.5)]
    velocities = calculate_velocity(samples)
    assert len(velocities) == 1
    assert velocities[0].timestamp == 200
    assert calculate_velocity([Sample(1, 0.1)]) == []


def test_saccade_detection_and_override():
    print("Testing saccade detection...")
    samples = make_samples([0.0, 0.0, 0.9, 0.9, -0.9, -0.9], step=10)
    result = analyze_samples(samples)
    assert result.saccades == [20, 40]
    assert abs(result.saccade_frequency - 2 / 0.05) < 1e-9

    strict = analyze_samples(samples, saccade_threshold=0.5)
    assert strict.saccades == [40]

    config = AnalyticsConfig(saccade_threshold=1.0)
    assert analyze_samples(samples, config).saccades == []
    assert detect_saccades(calculate_velocity(samples), threshold=0.0) == [20, 40]
    print("✓ Thresholds are per-call configurable")


def test_fixation_detection():
    print("Testing fixation detection...")
    slow = make_samples([0.1, 0.1, 0.1, 0.1], step=50, start=1000)  # 1000-1150
    jump = [Sample(1200, 0.9)]
    tail = make_samples([0.9, 0.9], step=30, start=1230)  # 1200-1260, too short
    fixations = detect_fixations(slow + jump + tail, velocity_threshold=0.01, min_duration_ms=100)
    assert len(fixations) == 1
    assert fixations[0].start == 1000
    assert fixations[0].end == 1150
    assert fixations[0].duration == 150

    trailing = detect_fixations(jump + tail, velocity_threshold=0.01, min_duration_ms=50)
    assert [(f.start, f.end) for f in trailing] == [(1200, 1260)]
    print("✓ Slow runs above the minimum duration reported")


def test_empty_and_single_sample():
    result = analyze_samples([])
    assert result == AnalyticsResult()
    single = analyze_samples([Sample(100, 0.2, 0.5)])
    assert single.total_points == 1
    assert single.duration == 0.0
    assert single.mean_velocity == 0.0
    assert single.saccade_frequency == 0.0
    assert single.mean_confidence == 0.5
    assert saccade_frequency([1, 2], 0) == 0.0


def test_mean_confidence_ignores_missing():
    samples = [Sample(100, 0.1, 0.5), Sample(200, 0.1, None), Sample(300, 0.1, 1.0)]
    assert analyze_samples(samples).mean_confidence == 0.75
    assert analyze_samples(make_samples([0.1, 0.2], confidence=None)).mean_confidence == 0.0


def test_summary_strings():
    samples = make_samples([0.0, 0.5, 1.0, 0.52, 0.48])
    summary = generate_summary(analyze_samples(samples))
    assert summary['Total Points'] == '5'
    assert summary['Duration'] == '0.40s'
    assert summary['Max Velocity'] == '5.00 units/s'
    assert summary['Avg Confidence'] == '100.0%'


def test_analyze_stored_session():
    print("Testing session analysis...")
    store = InMemorySessionStore()
    session_id = store.create_session(None, 30)
    store.append_points(session_id, [
        FilteredSample(timestamp=ts, raw_value=v, confidence=1.0, filtered_value=v)
        for ts, v in [(100, 0.0), (200, 0.5), (300, 1.0), (400, 0.52), (500, 0.48)]
    ])

    unsmoothed = analyze_session(store, session_id, smoothing=False)
    assert unsmoothed['analytics'].max_velocity == 0.005
    assert unsmoothed['processing']['originalPoints'] == 5

    smoothed = analyze_session(store, session_id,
                               filter_config=FilterConfig(window_size=3, outlier_threshold=None))
    assert smoothed['analytics'].max_velocity < unsmoothed['analytics'].max_velocity
    assert smoothed['processing']['processedPoints'] == 5
    assert smoothed['session']['id'] == session_id
    assert 'Saccade Frequency' in smoothed['summary']
    print("✓ Stored sessions re-smoothed and analyzed")


def run_all_tests():
    """Run all analytics tests."""
    print("=" * 50)
    print("ANALYTICS TESTS")
    print("=" * 50)

    tests = [
        test_velocity_scenario,
        test_velocity_uses_filtered_value,
        test_zero_time_step_skipped,
        test_saccade_detection_and_override,
        test_fixation_detection,
        test_empty_and_single_sample,
        test_mean_confidence_ignores_missing,
        test_summary_strings,
        test_analyze_stored_session,
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
