"""
Document sinks.

The text surface a chat lives in. Line numbers are 1-based and inclusive.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)


class DocumentSink(Protocol):
    """Line-oriented read/write access to a chat document."""

    @property
    def key(self) -> str: ...

    def line_count(self) -> int: ...

    def read_lines(self, start: int, end: int) -> list[str]: ...

    def replace_span(self, start: int, end: int, new_lines: list[str]) -> None: ...

    def append_at(self, line: int, new_lines: list[str]) -> None: ...


class InMemoryDocument:
    """
    A document held as a list of lines.

    ``replace_span(start, start - 1, lines)`` inserts before ``start``;
    ``append_at(line, lines)`` inserts after ``line`` (0 inserts at the top).
    """

    def __init__(self, text: str | list[str] = "", key: str = "memory"):
        if isinstance(text, str):
            self._lines = text.split("\n")
        else:
            self._lines = list(text)
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    @property
    def text(self) -> str:
        return "\n".join(self._lines)

    def lines(self) -> list[str]:
        return list(self._lines)

    def line_count(self) -> int:
        return len(self._lines)

    def _check(self, start: int, end: int) -> None:
        if start < 1 or end < start - 1 or end > len(self._lines):
            raise IndexError(f"Span {start}..{end} out of range (1..{len(self._lines)})")

    def read_lines(self, start: int, end: int) -> list[str]:
        self._check(start, end)
        return self._lines[start - 1 : end]

    def replace_span(self, start: int, end: int, new_lines: list[str]) -> None:
        self._check(start, end)
        self._lines[start - 1 : end] = list(new_lines)

    def append_at(self, line: int, new_lines: list[str]) -> None:
        if line < 0 or line > len(self._lines):
            raise IndexError(f"Line {line} out of range (0..{len(self._lines)})")
        self._lines[line:line] = list(new_lines)


class FileDocument(InMemoryDocument):
    """A document loaded from a file; save() writes it back."""

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser()
        super().__init__(self.path.read_text(encoding="utf-8"), key=str(self.path.resolve()))

    def save(self) -> None:
        self.path.write_text(self.text, encoding="utf-8")
        logger.debug(f"Saved {self.path}")
