"""
Real-time recording pipeline.

Orchestrates the complete data flow for one recording session:
1. Receive samples from the position source
2. Map raw positions through the active calibration
3. Live path: streaming filter → live window buffer (display)
4. Persistence path: raw batches handed to a filter worker, filtered
   results queued on the transmission batcher
5. Periodic live analytics over the display window

Raw batches cross to the worker by ownership transfer: the pending list is
swapped for a fresh one before submission and never touched again by the
recorder. Results come back through the returned futures and are harvested
in submission order on the recorder's thread.
"""

import time
import logging
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional, Dict, Any, List
from PyQt6.QtCore import QObject, pyqtSignal, QTimer

from .calibration import CalibrationEngine
from .filter_pipeline import FilterPipeline, StreamingFilter, FilterConfig
from .live_buffer import LiveWindowBuffer, LiveWindowConfig
from .position_source import PositionSource
from .samples import Sample, FilteredSample, sort_samples
from .transmission import TransmissionBatcher, TransmissionConfig, TransmissionStats
from gaze_pipeline.utils.analytics import AnalyticsConfig, analyze_samples
from gaze_pipeline.utils.validation import ValidationUtils, ValidationError, ConflictError, NotFoundError, ErrorHandlingUtils

logger = logging.getLogger(__name__)


@dataclass
class RecorderConfig:
    dispatch_interval_ms: int = 200
    analytics_interval_ms: int = 1000
    worker_threads: int = 1
    sampling_rate_hz: int = 30

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'RecorderConfig':
        return cls(
            dispatch_interval_ms=config.get('dispatch_interval_ms', 200),
            analytics_interval_ms=config.get('analytics_interval_ms', 1000),
            worker_threads=config.get('worker_threads', 1),
            sampling_rate_hz=config.get('sampling_rate_hz', 30),
        )


@dataclass
class RecordingStats:
    """Counters for the current recording."""
    samples_received: int = 0
    samples_rejected: int = 0
    batches_dispatched: int = 0
    filter_failures: int = 0
    started_at: float = 0.0
    stopped_at: float = 0.0


class SessionRecorder(QObject):
    """
    Per-session recording pipeline.

    Owns the live window, the streaming filter, the filter worker and the
    transmission batcher of the active session. Nothing is shared between
    sessions.
    """

    recording_started = pyqtSignal(str)  # Session id
    recording_stopped = pyqtSignal(str)
    recording_aborted = pyqtSignal(str)
    live_sample = pyqtSignal(object)  # FilteredSample for the chart
    sample_rejected = pyqtSignal(str)  # Validation message
    analytics_updated = pyqtSignal(object)  # AnalyticsResult of the live window
    transmission_error = pyqtSignal(str)
    processing_error = pyqtSignal(str)

    def __init__(self, store, calibration: Optional[CalibrationEngine] = None,
                 filter_config: Optional[FilterConfig] = None,
                 live_config: Optional[LiveWindowConfig] = None,
                 transmission_config: Optional[TransmissionConfig] = None,
                 analytics_config: Optional[AnalyticsConfig] = None,
                 config: Optional[RecorderConfig] = None,
                 executor: Optional[ThreadPoolExecutor] = None,
                 live_buffer: Optional[LiveWindowBuffer] = None):
        """
        Initialize the recorder.

        Args:
            store: SessionStore receiving the filtered samples
            calibration: Calibration engine (pass-through mapping when None)
            filter_config: Shared by the streaming and batch filters
            live_config: Live window configuration
            transmission_config: Upload cadence
            analytics_config: Thresholds for live analytics
            config: Recorder timing
            executor: Filter worker; a single-thread pool is created when None
            live_buffer: Pre-built live window (e.g. with an injected clock)
        """
        super().__init__()

        self.store = store
        self.calibration = calibration or CalibrationEngine()
        self.filter_config = filter_config or FilterConfig()
        self.transmission_config = transmission_config or TransmissionConfig()
        self.analytics_config = analytics_config or AnalyticsConfig()
        self.config = config or RecorderConfig()

        self.pipeline = FilterPipeline(self.filter_config)
        self.streaming_filter = StreamingFilter(self.filter_config)
        self.live_buffer = live_buffer or LiveWindowBuffer(live_config)

        self._owns_executor = executor is None
        self.executor = executor or ThreadPoolExecutor(
            max_workers=self.config.worker_threads, thread_name_prefix="gaze_filter"
        )

        self.session_id: Optional[str] = None
        self.batcher: Optional[TransmissionBatcher] = None
        self.is_recording = False
        self.is_paused = False
        self.stats = RecordingStats()

        self._pending_raw: List[Sample] = []
        self._in_flight = deque()  # (raw batch, future) in submission order
        self._next_seq = 0
        self._awaiting_final = False  # Stopped, final flush or finalize not yet done

        self.dispatch_timer = QTimer()
        self.dispatch_timer.setInterval(self.config.dispatch_interval_ms)
        self.dispatch_timer.timeout.connect(self.dispatch)

        self.analytics_timer = QTimer()
        self.analytics_timer.setInterval(self.config.analytics_interval_ms)
        self.analytics_timer.timeout.connect(self._update_analytics)

        logger.info("SessionRecorder initialized")

    def attach_source(self, source: PositionSource):
        """Route a position source's samples into this recorder."""
        source.set_sample_callback(self.ingest)

    def start_recording(self, sampling_rate_hz: Optional[int] = None,
                        device_info: Optional[str] = None) -> str:
        """
        Create a session and start the pipeline timers.

        Returns:
            New session id

        Raises:
            ConflictError: If a recording is already active
        """
        if self.is_recording:
            raise ConflictError(f"Recording already active for session {self.session_id}")

        rate = sampling_rate_hz or self.config.sampling_rate_hz
        self.session_id = self.store.create_session(self.calibration.mapping, rate, device_info)

        self.batcher = TransmissionBatcher(self.store, self.session_id, self.transmission_config)
        self.batcher.transmission_failed.connect(self.transmission_error.emit)
        self.batcher.session_lost.connect(self._on_session_lost)

        self.stats = RecordingStats(started_at=time.time())
        self._pending_raw = []
        self._in_flight.clear()
        self._next_seq = 0
        self._awaiting_final = False
        self.streaming_filter.reset()
        self.live_buffer.clear()

        self.is_recording = True
        self.is_paused = False
        self.live_buffer.start_monitoring()
        self.batcher.start()
        self.dispatch_timer.start()
        self.analytics_timer.start()

        logger.info(f"Recording started: session {self.session_id} at {rate}Hz")
        self.recording_started.emit(self.session_id)
        return self.session_id

    def ingest(self, sample: Sample) -> Optional[FilteredSample]:
        """
        Accept one detector sample.

        While a calibration window is open the raw value is also collected
        for calibration. During an active, unpaused recording the calibrated
        sample goes to the live window and into the pending raw batch.

        Returns:
            The live-filtered sample, or None if it was not recorded
        """
        try:
            ts, raw, confidence = ValidationUtils.validate_sample_fields(
                sample.timestamp, sample.raw_value, sample.confidence
            )
        except ValidationError as e:
            self.stats.samples_rejected += 1
            logger.warning(f"Sample rejected: {e}")
            self.sample_rejected.emit(str(e))
            return None

        if self.calibration.is_sampling:
            self.calibration.add_raw_sample(raw)

        if not self.is_recording or self.is_paused:
            return None

        # Equal timestamps are legal; the sequence keeps them distinct in the store
        calibrated = Sample(ts, self.calibration.calibrate(raw), confidence, self._next_seq)
        self._next_seq += 1
        self.stats.samples_received += 1

        live = self.streaming_filter.process(calibrated)
        self.live_buffer.append(live)
        self._pending_raw.append(calibrated)
        self.live_sample.emit(live)
        return live

    def ingest_raw(self, timestamp, position, confidence=None) -> Optional[FilteredSample]:
        """Convenience wrapper building the Sample from plain values."""
        try:
            sample = Sample.create(timestamp, position, confidence)
        except ValidationError as e:
            self.stats.samples_rejected += 1
            logger.warning(f"Sample rejected: {e}")
            self.sample_rejected.emit(str(e))
            return None
        return self.ingest(sample)

    def dispatch(self):
        """Hand the pending raw batch to the worker and collect results (timer slot)."""
        self._harvest()
        if self._pending_raw:
            batch, self._pending_raw = self._pending_raw, []
            batch = sort_samples(batch)
            self._in_flight.append((batch, self.executor.submit(self.pipeline.process, batch)))
            self.stats.batches_dispatched += 1
            logger.debug(f"Dispatched raw batch of {len(batch)} samples")
        self._harvest()

    def _harvest(self, block: bool = False):
        while self._in_flight and (block or self._in_flight[0][1].done()):
            batch, future = self._in_flight.popleft()
            try:
                filtered = future.result()
            except Exception as e:
                # Raw values are never dropped: persist them unfiltered
                self.stats.filter_failures += 1
                logger.error(f"Filter worker failed on batch of {len(batch)}: {e}")
                self.processing_error.emit(str(e))
                filtered = [FilteredSample.from_sample(s) for s in batch]
            if self.batcher is not None:
                self.batcher.enqueue(filtered)

    def _update_analytics(self):
        try:
            result = analyze_samples(self.live_buffer.samples(include_placeholders=False),
                                     self.analytics_config)
        except Exception as e:
            logger.error(f"Live analytics failed: {e}")
            self.processing_error.emit(str(e))
            return
        self.analytics_updated.emit(result)

    def pause_recording(self):
        if not self.is_recording or self.is_paused:
            return
        self.is_paused = True
        self.live_buffer.stop_monitoring()
        self.batcher.pause()
        logger.info(f"Recording paused: session {self.session_id}")

    def resume_recording(self):
        if not self.is_recording or not self.is_paused:
            return
        self.is_paused = False
        self.live_buffer.start_monitoring()
        self.batcher.resume()
        logger.info(f"Recording resumed: session {self.session_id}")

    def _cancel_timers(self):
        self.dispatch_timer.stop()
        self.analytics_timer.stop()
        self.live_buffer.stop_monitoring()
        if self.batcher is not None:
            self.batcher.stop()

    def stop_recording(self) -> TransmissionStats:
        """
        Stop recording and synchronously flush everything to the store.

        All timers are cancelled first, the worker is drained, then one final
        append is made. The session is finalized only after that append
        succeeds.

        Returns:
            Final transmission statistics

        Raises:
            ConflictError: If no recording is active
            TransmissionError: If the final append failed (use retry_final_flush)
            NotFoundError: If the session was deleted meanwhile
        """
        if not self.is_recording:
            raise ConflictError("No active recording")

        self._cancel_timers()
        self.is_recording = False
        self.is_paused = False
        self._awaiting_final = True
        self.stats.stopped_at = time.time()

        if self._pending_raw:
            batch, self._pending_raw = sort_samples(self._pending_raw), []
            self._in_flight.append((batch, self.executor.submit(self.pipeline.process, batch)))
            self.stats.batches_dispatched += 1
        self._harvest(block=True)

        stats = self._finish()
        ErrorHandlingUtils.log_performance_warning("stop_recording", time.time() - self.stats.stopped_at)
        return stats

    def retry_final_flush(self) -> TransmissionStats:
        """Retry a final flush that failed during stop_recording()."""
        if self.batcher is None or self.is_recording or not self._awaiting_final:
            raise ConflictError("No stopped recording awaiting a final flush")
        return self._finish()

    def _finish(self) -> TransmissionStats:
        try:
            stats = self.batcher.flush_final()
        except NotFoundError:
            self._awaiting_final = False
            raise
        self.store.finalize_session(self.session_id)
        self._awaiting_final = False
        logger.info(f"Recording stopped: session {self.session_id}, "
                    f"{self.stats.samples_received} samples received, "
                    f"{stats.uploaded_total} uploaded")
        self.recording_stopped.emit(self.session_id)
        return stats

    def abort_recording(self):
        """
        Cancel everything without a final flush (e.g. session deleted).
        """
        self._cancel_timers()
        for _, future in self._in_flight:
            future.cancel()
        self._in_flight.clear()
        self._pending_raw = []
        self._awaiting_final = False
        dropped = self.batcher.discard() if self.batcher is not None else 0
        was_recording = self.is_recording
        self.is_recording = False
        self.is_paused = False
        if was_recording:
            logger.warning(f"Recording aborted: session {self.session_id}, {dropped} queued points dropped")
            self.recording_aborted.emit(self.session_id or "")

    def _on_session_lost(self, session_id: str):
        logger.error(f"Session {session_id} disappeared during recording")
        self.abort_recording()

    def shutdown(self):
        """Abort any recording and release the worker."""
        if self.is_recording:
            self.abort_recording()
        if self._owns_executor:
            self.executor.shutdown(wait=True)
        logger.info("SessionRecorder shutdown completed")
