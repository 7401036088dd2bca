"""
Streaming response writer.

Writes a streamed response into a document as it arrives. Lines completed
by earlier chunks are left alone; only the unfinished tail is rewritten.
"""

from __future__ import annotations

import logging

from colloquy.chat.document import DocumentSink

logger = logging.getLogger(__name__)


class StreamWriter:
    """
    Incrementally writes response text at an anchor line.

    The anchor must be an existing (normally blank) placeholder line; it is
    replaced by the first response line.
    """

    def __init__(self, document: DocumentSink, anchor_line: int, prefix: str = ""):
        self.document = document
        self.anchor_line = anchor_line
        self.prefix = prefix
        self.response = ""
        self._finished_lines = 0

    @property
    def last_line(self) -> int:
        """Last document line holding response text."""
        return self.anchor_line + len(self.response.split("\n")) - 1

    def write(self, chunk: str) -> None:
        if not chunk:
            return
        old_count = len(self.response.split("\n"))
        self.response += chunk
        lines = [self.prefix + line for line in self.response.split("\n")]

        start = self.anchor_line + self._finished_lines
        end = self.anchor_line + old_count - 1
        self.document.replace_span(start, end, lines[self._finished_lines :])
        self._finished_lines = max(0, len(lines) - 1)
