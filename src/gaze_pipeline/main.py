import sys
import json
import logging
import argparse
from pathlib import Path

from PyQt6.QtCore import QCoreApplication, QTimer

from gaze_pipeline.config import (
    APP_NAME, APP_VERSION, SUPPORTED_EXPORT_FORMATS, PIPELINE_CONFIG, get_section, load_pipeline_config
)
from gaze_pipeline.core.session_store import SQLiteSessionStore, InMemorySessionStore
from gaze_pipeline.gaze_signal.calibration import CalibrationEngine, CalibrationConfig
from gaze_pipeline.gaze_signal.filter_pipeline import FilterConfig
from gaze_pipeline.gaze_signal.live_buffer import LiveWindowConfig
from gaze_pipeline.gaze_signal.playback import PlaybackController, PlaybackConfig
from gaze_pipeline.gaze_signal.position_source import MockPositionSource
from gaze_pipeline.gaze_signal.recorder import SessionRecorder, RecorderConfig
from gaze_pipeline.gaze_signal.transmission import TransmissionConfig
from gaze_pipeline.utils.analytics import AnalyticsConfig, analyze_session
from gaze_pipeline.utils.validation import GazeSignalError, ValidationError, setup_logging

logger = logging.getLogger(__name__)


def parse_calibration(text: str):
    """Parse a "left,center,right" option value into three floats."""
    parts = [p.strip() for p in text.split(',')]
    if len(parts) != 3:
        raise ValidationError(f"--calibration needs three comma-separated values, got {text!r}")
    try:
        return tuple(float(p) for p in parts)
    except ValueError as e:
        raise ValidationError(f"--calibration values must be numeric, got {text!r}") from e


def open_store(db_path):
    if db_path:
        return SQLiteSessionStore(db_path)
    return InMemorySessionStore()


def export_session(store, session_id: str, file_path: str):
    """Write a session to .csv or .json depending on the file suffix."""
    suffix = Path(file_path).suffix.lower()
    if suffix not in SUPPORTED_EXPORT_FORMATS:
        raise GazeSignalError(f"Unsupported export format: {suffix}")

    text = store.export_csv(session_id) if suffix == '.csv' else store.export_json_text(session_id)
    Path(file_path).write_text(text, encoding='utf-8')
    logger.info(f"Exported session {session_id} to {file_path}")
    print(f"Exported session {session_id} to {file_path}")


def print_summary(store, session_id: str, config):
    report = analyze_session(
        store, session_id,
        filter_config=FilterConfig.from_dict(get_section('filter', config)),
        config=AnalyticsConfig.from_dict(get_section('analytics', config))
    )
    print(f"Session {session_id}")
    for key, value in report['summary'].items():
        print(f"  {key}: {value}")


def run_recording(args, config) -> int:
    """Record from the mock source for a fixed duration, then stop and report."""
    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    calibration = CalibrationEngine(CalibrationConfig.from_dict(get_section('calibration', config)))
    if args.calibration:
        calibration.set_calibration(*parse_calibration(args.calibration))
    store = open_store(args.db)

    recorder = SessionRecorder(
        store,
        calibration=calibration,
        filter_config=FilterConfig.from_dict(get_section('filter', config)),
        live_config=LiveWindowConfig.from_dict(get_section('live_window', config)),
        transmission_config=TransmissionConfig.from_dict(get_section('transmission', config)),
        analytics_config=AnalyticsConfig.from_dict(get_section('analytics', config)),
        config=RecorderConfig.from_dict(get_section('recorder', config)),
    )
    source = MockPositionSource(rate_hz=args.rate, seed=args.seed)
    recorder.attach_source(source)
    recorder.transmission_error.connect(lambda msg: logger.warning(f"Transmission error: {msg}"))
    recorder.analytics_updated.connect(
        lambda result: logger.info(f"Live: {result.total_points} points, "
                                   f"{result.saccade_frequency:.2f} saccades/s")
    )

    session_id = recorder.start_recording(sampling_rate_hz=args.rate, device_info="mock")
    source.start_streaming()
    exit_code = 0

    def finish():
        nonlocal exit_code
        source.stop_streaming()
        try:
            recorder.stop_recording()
            print_summary(store, session_id, config)
            if args.export:
                export_session(store, session_id, args.export)
        except GazeSignalError as e:
            logger.error(f"Recording failed: {e}")
            print(f"Error: {e}", file=sys.stderr)
            exit_code = 1
        finally:
            recorder.shutdown()
            app.quit()

    QTimer.singleShot(int(args.duration * 1000), finish)
    app.exec()
    return exit_code


def run_replay(args, config) -> int:
    """Replay a stored session, printing the cursor sample on every tick."""
    app = QCoreApplication.instance() or QCoreApplication(sys.argv)
    store = open_store(args.db)
    controller = PlaybackController(store.read_samples(args.session_id),
                                    PlaybackConfig.from_dict(get_section('playback', config)))
    controller.set_speed(args.speed)

    def show(position):
        sample = controller.nearest_sample(position)
        print(f"{int(position)}\t{sample.value:+.4f}")

    controller.position_changed.connect(show)
    controller.playback_finished.connect(app.quit)
    if not controller.play():
        print("Session has no samples")
        return 0
    app.exec()
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog='gaze-pipeline', description=APP_NAME)
    parser.add_argument('--version', action='version', version=f"{APP_NAME} {APP_VERSION}")
    parser.add_argument('--db', help="SQLite database file (in-memory when omitted)")
    parser.add_argument('--config', help="JSON file overriding pipeline defaults")
    parser.add_argument('--verbose', action='store_true', help="Log INFO to the console")
    subparsers = parser.add_subparsers(dest='command', required=True)

    record = subparsers.add_parser('record', help="Record a session from the mock source")
    record.add_argument('--duration', type=float, default=5.0, help="Seconds to record")
    record.add_argument('--rate', type=int, default=PIPELINE_CONFIG['recorder']['sampling_rate_hz'])
    record.add_argument('--calibration', help="left,center,right raw reference values")
    record.add_argument('--seed', type=int, default=None)
    record.add_argument('--export', help="Export file (.csv or .json) after stopping")

    subparsers.add_parser('sessions', help="List stored sessions")

    stats = subparsers.add_parser('stats', help="Analytics summary of a session")
    stats.add_argument('session_id')

    export = subparsers.add_parser('export', help="Export a session")
    export.add_argument('session_id')
    export.add_argument('file')

    delete = subparsers.add_parser('delete', help="Delete a session and its samples")
    delete.add_argument('session_id')

    replay = subparsers.add_parser('replay', help="Replay a session to stdout")
    replay.add_argument('session_id')
    replay.add_argument('--speed', type=float, default=PIPELINE_CONFIG['playback']['speed'])

    args = parser.parse_args(argv)
    setup_logging(console_level=logging.INFO if args.verbose else logging.WARNING)
    config = load_pipeline_config(args.config)

    try:
        if args.command == 'record':
            return run_recording(args, config)
        if args.command == 'replay':
            return run_replay(args, config)

        store = open_store(args.db)
        if args.command == 'sessions':
            for session in store.list_sessions():
                print(json.dumps({**session.to_dict(), 'sampleCount': session.sample_count}))
        elif args.command == 'stats':
            print_summary(store, args.session_id, config)
        elif args.command == 'export':
            export_session(store, args.session_id, args.file)
        elif args.command == 'delete':
            store.delete_session(args.session_id)
            print(f"Deleted session {args.session_id}")
        return 0
    except GazeSignalError as e:
        logger.error(f"{args.command} failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
