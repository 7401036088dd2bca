"""Transcript parsing: document lines to headers and exchanges."""

from colloquy.transcript.models import Exchange, FileReference, MetaLine, TextSpan, Transcript
from colloquy.transcript.parser import (
    TranscriptParser,
    find_exchange_at_line,
    find_header_end,
    parse_headers,
    parse_transcript,
    span_lines,
)

__all__ = [
    "Exchange",
    "FileReference",
    "MetaLine",
    "TextSpan",
    "Transcript",
    "TranscriptParser",
    "find_exchange_at_line",
    "find_header_end",
    "parse_headers",
    "parse_transcript",
    "span_lines",
]
