"""
In-memory registry of running transport processes.

Tracks one handle per live query, keyed by query id, and enforces that a
document has at most one live query at a time.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from colloquy.errors import BusyConflictError

logger = logging.getLogger(__name__)

ProcessState = Literal["spawned", "streaming", "exited", "cancelled"]


@dataclass
class ProcessHandle:
    """
    In-memory record of one supervised process.

    State machine: spawned -> streaming -> exited | cancelled.
    """

    query_id: str
    """Unique id of the query this process serves."""

    document_key: str
    """Document the query writes into."""

    argv: list[str]
    """Command line of the process."""

    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    """When the process was requested."""

    state: ProcessState = "spawned"

    pid: int | None = None
    """Process ID once spawned."""

    process: Any | None = None
    """asyncio.subprocess.Process once spawned."""

    task: Any | None = None
    """asyncio.Task driving the process."""

    escalation: Any | None = None
    """asyncio.Task escalating a cancel to SIGKILL."""

    cancelled: bool = False
    """Set when cancel() was requested."""

    timed_out: bool = False
    """Set when the cancellation came from the timeout."""

    @property
    def is_terminal(self) -> bool:
        return self.state in ("exited", "cancelled")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "query_id": self.query_id,
            "document_key": self.document_key,
            "argv0": self.argv[0] if self.argv else None,
            "started_at": self.started_at.isoformat(),
            "state": self.state,
            "pid": self.pid,
            "cancelled": self.cancelled,
            "timed_out": self.timed_out,
        }


class ProcessRegistry:
    """
    Thread-safe registry of live process handles.

    Lookups work by query id or by document key. Reservation is atomic, so
    two callers can never both hold the same document.
    """

    def __init__(self) -> None:
        self._handles: dict[str, ProcessHandle] = {}
        self._lock = threading.Lock()

    def reserve(self, handle: ProcessHandle) -> ProcessHandle:
        """
        Register a handle, claiming its document.

        Raises:
            BusyConflictError: If the document already has a live handle
        """
        with self._lock:
            for existing in self._handles.values():
                if existing.document_key == handle.document_key:
                    raise BusyConflictError(handle.document_key, existing.query_id)
            self._handles[handle.query_id] = handle

        logger.debug(f"Tracking query {handle.query_id} for {handle.document_key}")
        return handle

    def remove(self, query_id: str) -> ProcessHandle | None:
        """Remove a handle; returns it, or None if unknown."""
        with self._lock:
            handle = self._handles.pop(query_id, None)

        if handle:
            logger.debug(f"Untracked query {query_id}")
        return handle

    def get(self, query_id: str) -> ProcessHandle | None:
        with self._lock:
            return self._handles.get(query_id)

    def get_by_document(self, document_key: str) -> ProcessHandle | None:
        with self._lock:
            for handle in self._handles.values():
                if handle.document_key == document_key:
                    return handle
            return None

    def lookup(self, target: str) -> ProcessHandle | None:
        """Find a handle by query id, falling back to document key."""
        return self.get(target) or self.get_by_document(target)

    def is_busy(self, document_key: str) -> bool:
        return self.get_by_document(document_key) is not None

    def get_all(self) -> list[ProcessHandle]:
        with self._lock:
            return list(self._handles.values())

    def count(self) -> int:
        with self._lock:
            return len(self._handles)
