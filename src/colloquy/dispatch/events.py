"""Dispatch data models.

Dataclasses for the events of one streamed query and the pending-query
record the dispatcher mutates while the stream runs.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime

from colloquy.llm.models import UsageStats
from colloquy.process.registry import ProcessHandle


@dataclass
class TextDelta:
    """A chunk of decoded text from the streaming response."""

    query_id: str
    """Query the text belongs to."""

    text: str
    """The text content."""


@dataclass
class StreamResult:
    """Event when streaming is complete. Always the last event of a query."""

    query_id: str
    """Query that finished."""

    text: str = ""
    """Full accumulated text; kept even when an error is set."""

    usage: UsageStats | None = None
    """Token accounting, if the provider reported any."""

    error: Exception | None = None
    """Spawn failure, provider error, empty stream or secret failure."""

    cancelled: bool = False
    """Whether the query was cancelled."""

    timed_out: bool = False
    """Whether the cancellation came from the timeout."""

    returncode: int | None = None
    """Transport exit status."""

    @property
    def ok(self) -> bool:
        return self.error is None and not self.cancelled


# Union type for all stream events
StreamEvent = TextDelta | StreamResult


@dataclass
class PendingQuery:
    """
    In-flight query state.

    Created at dispatch time, mutated only by the dispatcher driving it and
    dropped once its StreamResult has been delivered.
    """

    id: str
    document_key: str
    provider: str
    accumulated_text: str = ""
    usage: UsageStats | None = None
    cancelled: bool = False
    timed_out: bool = False
    error: Exception | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    process_handle: ProcessHandle | None = None
    """Transport process, once spawned."""

    result: StreamResult | None = None
    """Set once the query has finished."""

    @property
    def done(self) -> bool:
        return self.result is not None
