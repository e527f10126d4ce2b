"""
Session persistence tier.

Defines the store contract the recording and replay pipeline relies on, and
provides an in-memory store (tests, demos) and a SQLite store (local files).
Both keep samples keyed by (session_id, timestamp, seq) in ascending
timestamp order. Equal timestamps are kept as separate rows. Re-appending a
sequenced point replaces the stored row, so retried uploads are idempotent;
points without a sequence number are always stored as new rows.
"""

import io
import json
import sqlite3
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Any, Iterable, Tuple

import pandas as pd

from gaze_pipeline.config import CSV_COLUMNS, POINT_FORMATS, PIPELINE_CONFIG
from gaze_pipeline.gaze_signal.calibration import CalibrationMap
from gaze_pipeline.gaze_signal.samples import FilteredSample
from gaze_pipeline.utils.analytics import session_statistics
from gaze_pipeline.utils.validation import (
    ValidationUtils, ValidationError, NotFoundError, ConflictError, CalibrationError
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = PIPELINE_CONFIG['storage']['default_page_size']
MAX_PAGE_SIZE = PIPELINE_CONFIG['storage']['max_page_size']


@dataclass
class Session:
    """Recording session metadata."""
    id: str
    created_at: datetime
    sampling_rate_hz: int
    calibration: Optional[CalibrationMap] = None
    device_info: Optional[str] = None
    is_closed: bool = False
    sample_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        calibration = self.calibration.to_dict() if self.calibration else {}
        return {
            'id': self.id,
            'createdAt': self.created_at.isoformat(),
            'deviceInfo': self.device_info,
            'samplingRate': self.sampling_rate_hz,
            'calibLeft': calibration.get('left'),
            'calibCenter': calibration.get('center'),
            'calibRight': calibration.get('right'),
            'isClosed': self.is_closed,
        }


def _coerce_calibration(calibration) -> Optional[CalibrationMap]:
    if calibration is None:
        return None
    try:
        if isinstance(calibration, CalibrationMap):
            return calibration.validate()
        return CalibrationMap.from_dict(calibration)
    except (KeyError, TypeError, ValueError) as e:
        raise ValidationError(f"Malformed calibration: {calibration!r}") from e
    except CalibrationError as e:
        raise ValidationError(str(e)) from e


def _validate_point(point: FilteredSample) -> FilteredSample:
    """Reject points with non-numeric or out-of-range fields."""
    if not isinstance(point, FilteredSample):
        raise ValidationError(f"Expected FilteredSample, got {type(point).__name__}")
    if point.is_placeholder:
        raise ValidationError(f"Placeholder sample at ts={point.timestamp} cannot be stored")
    ValidationUtils.validate_sample_fields(point.timestamp, point.raw_value, point.confidence, "append_points")
    if point.seq is not None and (not isinstance(point.seq, int) or point.seq < 0):
        raise ValidationError(f"append_points: seq must be a non-negative integer, got {point.seq!r}")
    if point.filtered_value is not None:
        if not ValidationUtils.is_number(point.filtered_value):
            raise ValidationError(f"append_points: filtered value must be numeric, got {point.filtered_value!r}")
        if not -1.0 <= point.filtered_value <= 1.0:
            raise ValidationError(f"append_points: filtered value {point.filtered_value} outside [-1, 1]")
    return point


def _format_point(sample: FilteredSample, point_format: str) -> Dict[str, Any]:
    base = {'ts': sample.timestamp, 'confidence': sample.confidence}
    if point_format == 'raw':
        base['x'] = sample.raw_value
    elif point_format == 'both':
        base['xRaw'] = sample.raw_value
        base['xFiltered'] = sample.filtered_value
    else:
        base['x'] = sample.value
    return base


class SessionStore(ABC):
    """
    Persistence contract: create / append / list / delete, plus exports.
    """

    @abstractmethod
    def create_session(self, calibration, sampling_rate_hz: int,
                       device_info: Optional[str] = None) -> str:
        """Create a session and return its id."""

    @abstractmethod
    def get_session(self, session_id: str) -> Session:
        """Return session metadata (raises NotFoundError)."""

    @abstractmethod
    def list_sessions(self) -> List[Session]:
        """All sessions, newest first."""

    @abstractmethod
    def _store_points(self, session_id: str, points: List[FilteredSample]):
        """Upsert validated points; unsequenced points get the next free seq for their timestamp."""

    @abstractmethod
    def read_samples(self, session_id: str, limit: Optional[int] = None,
                     offset: int = 0) -> List[FilteredSample]:
        """Samples in ascending timestamp order (raises NotFoundError)."""

    @abstractmethod
    def count_samples(self, session_id: str) -> int:
        """Number of stored samples."""

    @abstractmethod
    def finalize_session(self, session_id: str):
        """Mark the session read-only."""

    @abstractmethod
    def delete_session(self, session_id: str):
        """Delete a session and all of its samples atomically."""

    def append_points(self, session_id: str, points: Iterable[FilteredSample]) -> Dict[str, int]:
        """
        Append filtered points to a session.

        Args:
            session_id: Target session
            points: Filtered samples (any order)

        Returns:
            {'accepted_count': n}

        Raises:
            NotFoundError: Unknown session
            ConflictError: Session already finalized
            ValidationError: Any malformed point (nothing is stored)
        """
        session = self.get_session(session_id)
        if session.is_closed:
            raise ConflictError(f"Session {session_id} is finalized")

        validated = [_validate_point(p) for p in points]
        self._store_points(session_id, validated)
        logger.debug(f"Stored {len(validated)} points in session {session_id}")
        return {'accepted_count': len(validated)}

    def list_points(self, session_id: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0,
                    format: str = 'filtered') -> Dict[str, Any]:
        """
        Page through stored points.

        Args:
            session_id: Session to read
            limit: Page size (capped at MAX_PAGE_SIZE)
            offset: Number of points to skip
            format: 'raw', 'filtered' or 'both'

        Returns:
            {'points': [...], 'pagination': {...}}
        """
        if format not in POINT_FORMATS:
            raise ValidationError(f"Unknown point format: {format}")
        if limit < 0 or offset < 0:
            raise ValidationError("limit and offset must be non-negative")

        limit = min(limit, MAX_PAGE_SIZE)
        samples = self.read_samples(session_id, limit=limit, offset=offset)
        total = self.count_samples(session_id)
        return {
            'points': [_format_point(s, format) for s in samples],
            'pagination': {
                'total': total,
                'limit': limit,
                'offset': offset,
                'has_more': offset + limit < total,
            },
        }

    def session_stats(self, session_id: str) -> Dict[str, Any]:
        """Raw/filtered value statistics and time range for one session."""
        stats = session_statistics(self.read_samples(session_id))
        stats['sessionId'] = session_id
        return stats

    def export_csv(self, session_id: str) -> str:
        """
        Export a session as CSV text.

        Header is timestamp,xRaw,xFiltered,confidence; absent values are
        written as empty strings.
        """
        samples = self.read_samples(session_id)
        df = pd.DataFrame(
            [[s.timestamp, s.raw_value, s.filtered_value, s.confidence] for s in samples],
            columns=CSV_COLUMNS,
        )
        buffer = io.StringIO()
        df.to_csv(buffer, index=False, na_rep='', lineterminator='\n')
        return buffer.getvalue()

    def export_json(self, session_id: str) -> Dict[str, Any]:
        """Export a session as a JSON-serializable dictionary."""
        session = self.get_session(session_id)
        samples = self.read_samples(session_id)
        return {
            'session': session.to_dict(),
            'samples': [
                {
                    'ts': str(s.timestamp),
                    'xRaw': s.raw_value,
                    'xFiltered': s.filtered_value,
                    'confidence': s.confidence,
                }
                for s in samples
            ],
        }

    def export_json_text(self, session_id: str, indent: int = 2) -> str:
        return json.dumps(self.export_json(session_id), indent=indent)


class InMemorySessionStore(SessionStore):
    """Dictionary-backed store, safe for use from multiple threads."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}
        self._samples: Dict[str, Dict[Tuple[int, int], FilteredSample]] = {}
        self._last_seq: Dict[str, Dict[int, int]] = {}  # Highest seq per timestamp
        self._lock = threading.RLock()
        logger.info("InMemorySessionStore initialized")

    def create_session(self, calibration, sampling_rate_hz: int,
                       device_info: Optional[str] = None) -> str:
        ok, rate = ValidationUtils.validate_numeric_range(sampling_rate_hz, 1, 10000, "sampling_rate_hz",
                                                          "create_session")
        if not ok:
            raise ValidationError(f"Invalid sampling rate: {sampling_rate_hz!r}")
        session = Session(
            id=str(uuid.uuid4()),
            created_at=datetime.now(timezone.utc),
            sampling_rate_hz=int(rate),
            calibration=_coerce_calibration(calibration),
            device_info=device_info,
        )
        with self._lock:
            self._sessions[session.id] = session
            self._samples[session.id] = {}
            self._last_seq[session.id] = {}
        logger.info(f"Session created: {session.id}")
        return session.id

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                raise NotFoundError(f"Session not found: {session_id}")
            session.sample_count = len(self._samples[session_id])
            return session

    def list_sessions(self) -> List[Session]:
        with self._lock:
            sessions = [self.get_session(sid) for sid in self._sessions]
        return sorted(sessions, key=lambda s: s.created_at, reverse=True)

    def _store_points(self, session_id: str, points: List[FilteredSample]):
        with self._lock:
            if session_id not in self._samples:
                raise NotFoundError(f"Session not found: {session_id}")
            bucket = self._samples[session_id]
            last_seq = self._last_seq[session_id]
            for point in points:
                if point.seq is None:
                    point = replace(point, seq=last_seq.get(point.timestamp, -1) + 1)
                bucket[(point.timestamp, point.seq)] = point
                last_seq[point.timestamp] = max(last_seq.get(point.timestamp, -1), point.seq)

    def read_samples(self, session_id: str, limit: Optional[int] = None,
                     offset: int = 0) -> List[FilteredSample]:
        with self._lock:
            if session_id not in self._samples:
                raise NotFoundError(f"Session not found: {session_id}")
            bucket = self._samples[session_id]
            ordered = [bucket[key] for key in sorted(bucket)]
        end = None if limit is None else offset + limit
        return ordered[offset:end]

    def count_samples(self, session_id: str) -> int:
        return self.get_session(session_id).sample_count

    def finalize_session(self, session_id: str):
        with self._lock:
            self.get_session(session_id).is_closed = True
        logger.info(f"Session finalized: {session_id}")

    def delete_session(self, session_id: str):
        with self._lock:
            if session_id not in self._sessions:
                raise NotFoundError(f"Session not found: {session_id}")
            del self._sessions[session_id]
            removed = len(self._samples.pop(session_id))
            del self._last_seq[session_id]
        logger.info(f"Session deleted: {session_id} ({removed} samples)")


class SQLiteSessionStore(SessionStore):
    """
    SQLite-backed store. Samples cascade-delete with their session.
    """

    SCHEMA = """
        CREATE TABLE IF NOT EXISTS session (
            id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL,
            device_info TEXT,
            sampling_rate INTEGER NOT NULL,
            calib_left REAL,
            calib_center REAL,
            calib_right REAL,
            is_closed INTEGER NOT NULL DEFAULT 0
        );
        CREATE TABLE IF NOT EXISTS sample (
            session_id TEXT NOT NULL REFERENCES session(id) ON DELETE CASCADE,
            ts INTEGER NOT NULL,
            seq INTEGER NOT NULL,
            x_raw REAL NOT NULL,
            x_filtered REAL,
            confidence REAL,
            is_outlier INTEGER NOT NULL DEFAULT 0,
            quality REAL NOT NULL DEFAULT 1.0,
            PRIMARY KEY (session_id, ts, seq)
        );
    """

    def __init__(self, path: str = ':memory:'):
        """
        Open (or create) a SQLite session database.

        Args:
            path: Database file path, ':memory:' for a private in-memory database
        """
        self.path = path
        self._lock = threading.RLock()
        self.connection = sqlite3.connect(path, check_same_thread=False)
        self.connection.execute("PRAGMA foreign_keys = ON")
        self.connection.executescript(self.SCHEMA)
        logger.info(f"SQLiteSessionStore opened: {path}")

    def close(self):
        with self._lock:
            self.connection.close()

    def _row_to_session(self, row) -> Session:
        calibration = None
        if row[4] is not None and row[5] is not None and row[6] is not None:
            calibration = CalibrationMap(row[4], row[5], row[6])
        return Session(
            id=row[0],
            created_at=datetime.fromisoformat(row[1]),
            device_info=row[2],
            sampling_rate_hz=row[3],
            calibration=calibration,
            is_closed=bool(row[7]),
            sample_count=row[8],
        )

    def create_session(self, calibration, sampling_rate_hz: int,
                       device_info: Optional[str] = None) -> str:
        ok, rate = ValidationUtils.validate_numeric_range(sampling_rate_hz, 1, 10000, "sampling_rate_hz",
                                                          "create_session")
        if not ok:
            raise ValidationError(f"Invalid sampling rate: {sampling_rate_hz!r}")
        calibration = _coerce_calibration(calibration)
        session_id = str(uuid.uuid4())
        calib = calibration.to_dict() if calibration else {}
        with self._lock, self.connection:
            self.connection.execute(
                "INSERT INTO session (id, created_at, device_info, sampling_rate, "
                "calib_left, calib_center, calib_right) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (session_id, datetime.now(timezone.utc).isoformat(), device_info, int(rate),
                 calib.get('left'), calib.get('center'), calib.get('right'))
            )
        logger.info(f"Session created: {session_id}")
        return session_id

    _SESSION_QUERY = (
        "SELECT s.id, s.created_at, s.device_info, s.sampling_rate, s.calib_left, "
        "s.calib_center, s.calib_right, s.is_closed, "
        "(SELECT COUNT(*) FROM sample WHERE session_id = s.id) FROM session s"
    )

    def get_session(self, session_id: str) -> Session:
        with self._lock:
            row = self.connection.execute(self._SESSION_QUERY + " WHERE s.id = ?", (session_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Session not found: {session_id}")
        return self._row_to_session(row)

    def list_sessions(self) -> List[Session]:
        with self._lock:
            rows = self.connection.execute(self._SESSION_QUERY + " ORDER BY s.created_at DESC").fetchall()
        return [self._row_to_session(row) for row in rows]

    def _store_points(self, session_id: str, points: List[FilteredSample]):
        with self._lock, self.connection:
            for p in points:
                seq = p.seq
                if seq is None:
                    seq = self.connection.execute(
                        "SELECT COALESCE(MAX(seq), -1) + 1 FROM sample WHERE session_id = ? AND ts = ?",
                        (session_id, p.timestamp)
                    ).fetchone()[0]
                self.connection.execute(
                    "INSERT OR REPLACE INTO sample (session_id, ts, seq, x_raw, x_filtered, confidence, "
                    "is_outlier, quality) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (session_id, p.timestamp, seq, p.raw_value, p.filtered_value, p.confidence,
                     int(p.is_outlier), p.quality)
                )

    def read_samples(self, session_id: str, limit: Optional[int] = None,
                     offset: int = 0) -> List[FilteredSample]:
        self.get_session(session_id)
        with self._lock:
            rows = self.connection.execute(
                "SELECT ts, x_raw, x_filtered, confidence, is_outlier, quality, seq FROM sample "
                "WHERE session_id = ? ORDER BY ts ASC, seq ASC LIMIT ? OFFSET ?",
                (session_id, -1 if limit is None else limit, offset)
            ).fetchall()
        return [
            FilteredSample(timestamp=row[0], raw_value=row[1], filtered_value=row[2],
                           confidence=row[3], is_outlier=bool(row[4]), quality=row[5], seq=row[6])
            for row in rows
        ]

    def count_samples(self, session_id: str) -> int:
        return self.get_session(session_id).sample_count

    def finalize_session(self, session_id: str):
        self.get_session(session_id)
        with self._lock, self.connection:
            self.connection.execute("UPDATE session SET is_closed = 1 WHERE id = ?", (session_id,))
        logger.info(f"Session finalized: {session_id}")

    def delete_session(self, session_id: str):
        with self._lock, self.connection:
            cursor = self.connection.execute("DELETE FROM session WHERE id = ?", (session_id,))
            if cursor.rowcount == 0:
                raise NotFoundError(f"Session not found: {session_id}")
        logger.info(f"Session deleted: {session_id}")


def load_samples_csv(source) -> List[FilteredSample]:
    """
    Read samples back from an exported CSV (path or file-like object).

    Returns:
        Samples sorted by timestamp
    """
    df = pd.read_csv(source)
    missing = [c for c in CSV_COLUMNS if c not in df.columns]
    if missing:
        raise ValidationError(f"CSV missing columns: {', '.join(missing)}")

    df = df.sort_values('timestamp', kind='stable')
    samples = []
    for row in df.itertuples(index=False):
        samples.append(FilteredSample(
            timestamp=int(row.timestamp),
            raw_value=float(row.xRaw),
            filtered_value=float(row.xFiltered) if pd.notna(row.xFiltered) else None,
            confidence=float(row.confidence) if pd.notna(row.confidence) else None,
        ))
    return samples
