"""
Batched, at-least-once upload of filtered samples to the persistence tier.

Every flush interval the pending queue is swapped for an empty one and sent
in a single append call. A failed batch is put back in front of whatever
arrived meanwhile, so ordering is preserved and nothing is lost; retries
continue every interval until the recording ends.
"""

import time
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, List, Iterable
from PyQt6.QtCore import QObject, pyqtSignal, QTimer

from .samples import FilteredSample
from gaze_pipeline.utils.validation import NotFoundError, TransmissionError, ErrorHandlingUtils

logger = logging.getLogger(__name__)


@dataclass
class TransmissionConfig:
    flush_interval_ms: int = 200

    @classmethod
    def from_dict(cls, config: Dict[str, Any]) -> 'TransmissionConfig':
        return cls(flush_interval_ms=config.get('flush_interval_ms', 200))


@dataclass
class TransmissionStats:
    """Upload counters for one recording."""
    uploaded_total: int = 0
    batches_sent: int = 0
    failed_attempts: int = 0
    average_batch_size: float = 0.0
    last_error: str = ""
    last_success_time: float = 0.0


class TransmissionBatcher(QObject):
    """
    Per-session upload queue with unbounded retry.

    Args to __init__:
        store: Object exposing append_points(session_id, points)
        session_id: Target session
    """

    batch_uploaded = pyqtSignal(int)  # Batch size
    transmission_failed = pyqtSignal(str)  # Error message, batch will be retried
    session_lost = pyqtSignal(str)  # Session id no longer exists

    def __init__(self, store, session_id: str, config: Optional[TransmissionConfig] = None):
        super().__init__()

        self.store = store
        self.session_id = session_id
        self.config = config or TransmissionConfig()
        self.pending: List[FilteredSample] = []
        self.stats = TransmissionStats()
        self.is_paused = False
        self.is_closed = False

        self.flush_timer = QTimer()
        self.flush_timer.setInterval(self.config.flush_interval_ms)
        self.flush_timer.timeout.connect(self.flush)

    def start(self):
        self.is_closed = False
        self.flush_timer.start()
        logger.info(f"Transmission started for session {self.session_id} "
                    f"(every {self.config.flush_interval_ms}ms)")

    def stop(self):
        self.flush_timer.stop()

    def pause(self):
        self.is_paused = True

    def resume(self):
        self.is_paused = False

    def enqueue(self, samples: Iterable[FilteredSample]) -> int:
        """
        Queue filtered samples for upload. Placeholders are refused.

        Returns:
            Number of samples queued
        """
        if self.is_closed:
            logger.warning(f"Session {self.session_id} closed; dropping enqueue")
            return 0
        accepted = [s for s in samples if not s.is_placeholder]
        self.pending.extend(accepted)
        return len(accepted)

    @property
    def pending_count(self) -> int:
        return len(self.pending)

    def flush(self) -> bool:
        """
        Send everything pending as one batch (timer slot).

        Returns:
            True if a batch was uploaded
        """
        if self.is_paused or self.is_closed or not self.pending:
            return False

        batch, self.pending = self.pending, []
        try:
            self.store.append_points(self.session_id, batch)
        except NotFoundError as e:
            self.is_closed = True
            self.flush_timer.stop()
            logger.error(f"Session {self.session_id} not found; dropping {len(batch)} points: {e}")
            self.session_lost.emit(self.session_id)
            return False
        except Exception as e:
            self.pending = batch + self.pending
            self.stats.failed_attempts += 1
            self.stats.last_error = str(e)
            context = ErrorHandlingUtils.create_error_context(
                "append_points", session=self.session_id, batch=len(batch), pending=len(self.pending)
            )
            logger.warning(f"Upload failed, will retry: {context}: {e}")
            self.transmission_failed.emit(str(e))
            return False

        self._record_success(len(batch))
        return True

    def _record_success(self, size: int):
        self.stats.uploaded_total += size
        self.stats.batches_sent += 1
        self.stats.average_batch_size = self.stats.uploaded_total / self.stats.batches_sent
        self.stats.last_success_time = time.time()
        logger.debug(f"Uploaded batch of {size} points to session {self.session_id}")
        self.batch_uploaded.emit(size)

    def flush_final(self) -> TransmissionStats:
        """
        Stop the timer and synchronously upload whatever is left.

        Returns:
            Final transmission statistics

        Raises:
            NotFoundError: If the session disappeared
            TransmissionError: If the final append failed; pending samples are
                kept so the caller may retry
        """
        self.flush_timer.stop()
        if self.is_closed or not self.pending:
            self.is_closed = True
            return self.stats

        batch = list(self.pending)
        try:
            self.store.append_points(self.session_id, batch)
        except NotFoundError:
            self.pending = []
            self.is_closed = True
            raise
        except Exception as e:
            self.stats.failed_attempts += 1
            self.stats.last_error = str(e)
            logger.error(f"Final flush of {len(batch)} points failed for session {self.session_id}: {e}")
            raise TransmissionError(f"Final flush failed for session {self.session_id}: {e}") from e

        self.pending = []
        self.is_closed = True
        self._record_success(len(batch))
        logger.info(f"Final flush complete: {self.stats.uploaded_total} points uploaded "
                    f"in {self.stats.batches_sent} batches")
        return self.stats

    def discard(self) -> int:
        """Drop pending samples without uploading (session aborted)."""
        self.flush_timer.stop()
        dropped = len(self.pending)
        self.pending = []
        self.is_closed = True
        return dropped
