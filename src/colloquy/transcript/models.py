"""Transcript data models.

Dataclasses describing a parsed chat transcript: the header map and the
ordered exchanges with their line spans. Line numbers are 1-based and
inclusive, matching what an editor shows.
"""

from dataclasses import dataclass, field
from typing import Any


@dataclass
class FileReference:
    """A file inclusion directive found at the start of a question line."""

    raw_directive: str
    """Original line text, including the marker."""

    path: str
    """Path (or glob pattern) extracted from the directive."""

    line: int
    """Line number of the directive."""

    resolved_content: str | None = None
    """Rendered file content, filled in by a file resolver."""


@dataclass
class TextSpan:
    """A contiguous block of transcript lines belonging to one turn."""

    start_line: int
    """First line of the span (the prefix line)."""

    end_line: int
    """Last line of the span."""

    content: str
    """Turn text with the prefix removed, trimmed of surrounding whitespace."""

    file_references: list[FileReference] = field(default_factory=list)
    """File references found in the span (questions only)."""

    def contains(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line


@dataclass
class MetaLine:
    """A single-line summary or reasoning entry inside an answer."""

    line: int
    content: str


@dataclass
class Exchange:
    """One question/answer turn pair plus optional summary and reasoning."""

    question: TextSpan
    answer: TextSpan | None = None
    summary: MetaLine | None = None
    reasoning: MetaLine | None = None

    @property
    def has_file_references(self) -> bool:
        return len(self.question.file_references) > 0

    @property
    def end_line(self) -> int:
        """Last line covered by this exchange."""
        if self.answer is not None:
            return self.answer.end_line
        return self.question.end_line


@dataclass
class Transcript:
    """Parsed chat document: headers plus exchanges in document order."""

    headers: dict[str, Any] = field(default_factory=dict)
    exchanges: list[Exchange] = field(default_factory=list)
    header_end: int = 0
    """Line number of the header separator."""

    @property
    def topic(self) -> str | None:
        value = self.headers.get("topic")
        return value if isinstance(value, str) else None

    def config_override(self, key: str, default: Any = None) -> Any:
        """Return a ``- key: value`` header override, or ``default``."""
        return self.headers.get(f"config_{key}", default)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""

        def _span(span: TextSpan | None) -> dict[str, Any] | None:
            if span is None:
                return None
            return {
                "start_line": span.start_line,
                "end_line": span.end_line,
                "content": span.content,
                "file_references": [
                    {"path": ref.path, "line": ref.line, "raw_directive": ref.raw_directive}
                    for ref in span.file_references
                ],
            }

        def _meta(meta: MetaLine | None) -> dict[str, Any] | None:
            return None if meta is None else {"line": meta.line, "content": meta.content}

        return {
            "headers": self.headers,
            "header_end": self.header_end,
            "exchanges": [
                {
                    "question": _span(ex.question),
                    "answer": _span(ex.answer),
                    "summary": _meta(ex.summary),
                    "reasoning": _meta(ex.reasoning),
                }
                for ex in self.exchanges
            ],
        }
