"""In-memory session registry keyed by access code.

The registry is the single source of truth for "does this code still
resolve to a file". It lives for the process lifetime only; nothing is
written to disk.

Thread safety: every operation acquires ``_lock``. The lock is reentrant so
the ingestion pipeline can hold it across code allocation and insertion
via :meth:`SessionRegistry.locked`.
"""
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set

from .errors import RegistryConsistencyError
from .schemas import Session

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Thread-safe map of live sessions."""

    def __init__(self) -> None:
        self._sessions: Dict[int, Session] = {}
        self._claimed: Dict[int, Session] = {}
        self._lock = threading.RLock()

    @contextmanager
    def locked(self) -> Iterator["SessionRegistry"]:
        """Hold the registry lock for a compound operation."""
        with self._lock:
            yield self

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def put(self, session: Session) -> None:
        """Insert *session*; a duplicate code is an internal fault."""
        with self._lock:
            if session.code in self._sessions:
                raise RegistryConsistencyError(session.code)
            self._sessions[session.code] = session
        logger.debug("Session registered: code=%d key=%s", session.code, session.storage_key)

    def get(self, code: int) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(code)

    def remove(self, code: int, expected: Optional[Session] = None) -> Optional[Session]:
        """Remove and return the session for *code*.

        With *expected*, the entry is removed only while *code* still maps to
        that session (matched by storage key), so a caller holding a stale
        session never retires a newer one that reused the code.

        Exactly one of several concurrent callers receives the session; the
        others get ``None``.
        """
        with self._lock:
            session = self._sessions.get(code)
            if session is None or not _same(session, expected):
                return None
            del self._sessions[code]
            self._claimed.pop(code, None)
        logger.debug("Session retired: code=%d", code)
        return session

    # ------------------------------------------------------------------
    # Download claims
    # ------------------------------------------------------------------

    def claim(self, code: int, expected: Optional[Session] = None) -> Optional[Session]:
        """Mark *code* as being downloaded.

        Returns None if the code is unknown, maps to a session other than
        *expected*, or another download already holds it. The claim is
        dropped by :meth:`release` or :meth:`remove`.
        """
        with self._lock:
            session = self._sessions.get(code)
            if session is None or code in self._claimed or not _same(session, expected):
                return None
            self._claimed[code] = session
            return session

    def release(self, code: int, expected: Optional[Session] = None) -> None:
        """Drop the claim on *code*, only if it is held for *expected* when given."""
        with self._lock:
            holder = self._claimed.get(code)
            if holder is not None and _same(holder, expected):
                del self._claimed[code]

    def is_claimed(self, code: int) -> bool:
        with self._lock:
            return code in self._claimed

    def snapshot(self) -> List[Session]:
        """Return a point-in-time copy of all live sessions."""
        with self._lock:
            return list(self._sessions.values())

    def storage_keys(self) -> Set[str]:
        with self._lock:
            return {s.storage_key for s in self._sessions.values()}

    def codes(self) -> Set[int]:
        with self._lock:
            return set(self._sessions)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
            self._claimed.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


def _same(session: Session, expected: Optional[Session]) -> bool:
    return expected is None or session.storage_key == expected.storage_key
