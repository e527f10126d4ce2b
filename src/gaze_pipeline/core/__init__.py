"""
Core persistence for recorded gaze sessions.
"""

from .session_store import (
    Session, SessionStore, InMemorySessionStore, SQLiteSessionStore, load_samples_csv
)

__all__ = ['Session', 'SessionStore', 'InMemorySessionStore', 'SQLiteSessionStore', 'load_samples_csv']
