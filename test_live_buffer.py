#!/usr/bin/env python3
"""
Tests for the live display window.

Covers time-based and count-based eviction, late arrivals and placeholder
injection while the source is stalled.
"""

import sys
import os

# Add src directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), 'src'))

from PyQt6.QtCore import QCoreApplication

app = QCoreApplication.instance() or QCoreApplication([])

from gaze_pipeline.gaze_signal.live_buffer import LiveWindowBuffer, LiveWindowConfig
from gaze_pipeline.gaze_signal.samples import FilteredSample


class FakeClock:
    def __init__(self, now=0):
        self.now = now

    def __call__(self):
        return self.now


def point(ts, value=0.1):
    return FilteredSample(timestamp=ts, raw_value=value, confidence=1.0, filtered_value=value)


def test_time_window_eviction():
    print("Testing time-based eviction...")
    buffer = LiveWindowBuffer(LiveWindowConfig(window_ms=1000))
    for ts in range(1000, 3100, 100):
        buffer.append(point(ts))

    timestamps = [s.timestamp for s in buffer.samples()]
    assert timestamps[0] == 2000
    assert timestamps[-1] == 3000
    assert buffer.time_range() == (2000, 3000)
    assert len(buffer) == 11
    print("✓ Samples older than the window evicted")


def test_count_bound():
    buffer = LiveWindowBuffer(LiveWindowConfig(window_ms=10 ** 9, max_samples=5))
    for ts in range(1, 21):
        buffer.append(point(ts))
    assert [s.timestamp for s in buffer.samples()] == [16, 17, 18, 19, 20]


def test_late_arrival_kept_sorted():
    print("Testing late arrivals...")
    buffer = LiveWindowBuffer(LiveWindowConfig(window_ms=1000))
    for ts in (100, 200, 400):
        buffer.append(point(ts))
    buffer.append(point(300))
    assert [s.timestamp for s in buffer.samples()] == [100, 200, 300, 400]
    assert buffer.latest_timestamp == 400

    full = LiveWindowBuffer(LiveWindowConfig(window_ms=10 ** 6, max_samples=3))
    for ts in (100, 200, 300):
        full.append(point(ts))
    full.append(point(50))  # Older than everything in a full window
    full.append(point(250))
    assert [s.timestamp for s in full.samples()] == [200, 250, 300]
    print("✓ Window stays time-ordered")


def test_placeholder_after_stall():
    print("Testing placeholder injection...")
    clock = FakeClock(10_000)
    config = LiveWindowConfig(window_ms=15000, stall_ms=2000)
    buffer = LiveWindowBuffer(config, clock=clock)
    added = []
    buffer.placeholder_added.connect(added.append)

    buffer.append(point(5000, 0.7))
    clock.now = 11_500
    assert buffer.check_stall() is None

    clock.now = 12_500
    placeholder = buffer.check_stall()
    assert placeholder is not None
    assert placeholder.is_placeholder
    assert placeholder.timestamp == 7500
    assert placeholder.filtered_value == 0.0
    assert placeholder.confidence == 0.0
    assert added == [placeholder]

    # Silence continues: placeholders keep advancing
    clock.now = 13_000
    second = buffer.check_stall()
    assert second.timestamp == 8000
    assert buffer.placeholder_count == 2

    assert len(buffer.samples()) == 3
    assert [s.timestamp for s in buffer.samples(include_placeholders=False)] == [5000]

    # A real sample resets the silence timer
    buffer.append(point(8100))
    assert buffer.check_stall() is None
    print("✓ Neutral placeholders fill a stalled source")


def test_no_placeholder_before_first_arrival():
    clock = FakeClock(0)
    buffer = LiveWindowBuffer(LiveWindowConfig(stall_ms=2000), clock=clock)
    assert buffer.check_stall() is None

    # Monitoring alone gives no timestamp base for placeholders
    buffer.start_monitoring()
    clock.now = 5000
    assert buffer.check_stall() is None
    assert len(buffer) == 0
    buffer.stop_monitoring()

    buffer.append(point(1_700_000_000_000))
    clock.now = 8000
    placeholder = buffer.check_stall()
    assert placeholder.timestamp == 1_700_000_003_000


def test_monitoring_toggle():
    buffer = LiveWindowBuffer(LiveWindowConfig(check_interval_ms=50), clock=FakeClock(0))
    buffer.start_monitoring()
    assert buffer.is_monitoring
    buffer.stop_monitoring()
    assert not buffer.is_monitoring


def test_values_and_clear():
    buffer = LiveWindowBuffer()
    buffer.append(FilteredSample(timestamp=10, raw_value=0.5, confidence=None, filtered_value=None))
    buffer.append(point(20, 0.25))
    assert buffer.values() == [(10, 0.5), (20, 0.25)]

    buffer.clear()
    assert len(buffer) == 0
    assert buffer.time_range() is None
    assert buffer.latest_timestamp is None


def test_window_updated_signal():
    buffer = LiveWindowBuffer()
    counts = []
    buffer.window_updated.connect(counts.append)
    buffer.append(point(1))
    buffer.append(point(2))
    assert counts == [1, 2]


def run_all_tests():
    """Run all live window tests."""
    print("=" * 50)
    print("LIVE WINDOW BUFFER TESTS")
    print("=" * 50)

    tests = [
        test_time_window_eviction,
        test_count_bound,
        test_late_arrival_kept_sorted,
        test_placeholder_after_stall,
        test_no_placeholder_before_first_arrival,
        test_monitoring_toggle,
        test_values_and_clear,
        test_window_updated_signal,
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
