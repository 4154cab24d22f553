"""
Shared SQLite database and transaction boundary.

Behavioral Contract:
- One connection per Database, opened in autocommit mode; every write runs
  inside an explicit BEGIN IMMEDIATE ... COMMIT so writers serialize at the
  store and readers never observe a half-applied change.
- A transaction either commits as a whole or rolls back as a whole.
- run_in_transaction retries "database is locked" and stale-version
  failures with jittered exponential backoff, then raises ConflictError.
- Nested transaction() calls on the same thread join the outer transaction.
Prototype: SQLite. Production: PostgreSQL with SELECT ... FOR UPDATE.
"""

import logging
import random
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional, TypeVar

from street_kernel.errors import ConflictError, StaleRecordError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_MESSAGES = ("database is locked", "database table is locked", "busy")


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored and compared times are naive UTC; aware inputs are converted."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    return to_naive_utc(value).isoformat() if value is not None else None


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, StaleRecordError):
        return True
    if isinstance(exc, sqlite3.OperationalError):
        message = str(exc).lower()
        return any(m in message for m in _RETRYABLE_MESSAGES)
    return False


class Database:
    """Thin transactional wrapper over a sqlite3 connection."""

    def __init__(
        self,
        db_path: str = ":memory:",
        busy_timeout_seconds: float = 5.0,
        max_retries: int = 4,
        retry_base_delay_seconds: float = 0.01,
        rng: Optional[random.Random] = None,
    ):
        self.db_path = db_path
        self.max_retries = max_retries
        self.retry_base_delay_seconds = retry_base_delay_seconds
        self._rng = rng or random.Random()
        self._conn = sqlite3.connect(
            db_path,
            check_same_thread=False,
            timeout=busy_timeout_seconds,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Open (or join) a write transaction and yield the connection."""
        with self._lock:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return

            self._conn.execute("BEGIN IMMEDIATE")
            self._depth = 1
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")
            finally:
                self._depth = 0

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Point-in-time read access; shares the writer lock."""
        with self._lock:
            yield self._conn

    def run_in_transaction(
        self,
        operation: str,
        fn: Callable[[sqlite3.Connection], T],
    ) -> T:
        """
        Run fn(conn) inside one transaction, retrying transient conflicts.

        Domain errors raised by fn propagate untouched after rollback.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                with self.transaction() as conn:
                    return fn(conn)
            except (sqlite3.OperationalError, StaleRecordError) as exc:
                if not _is_retryable(exc):
                    raise
                if attempt == self.max_retries:
                    logger.warning(
                        "%s gave up after %d attempts: %s", operation, attempt, exc
                    )
                    raise ConflictError(operation, attempt) from exc
                delay = self._backoff(attempt)
                logger.warning(
                    "%s conflicted (attempt %d/%d), retrying in %.3fs: %s",
                    operation, attempt, self.max_retries, delay, exc,
                )
                time.sleep(delay)
        raise ConflictError(operation, self.max_retries)

    def _backoff(self, attempt: int) -> float:
        base = self.retry_base_delay_seconds * (2 ** (attempt - 1))
        return base * self._rng.uniform(0.5, 1.5)

    def executescript(self, script: str) -> None:
        """Apply DDL. Used by stores to install their tables."""
        with self._lock:
            self._conn.executescript(script)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
