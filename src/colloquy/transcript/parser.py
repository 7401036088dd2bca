"""
Chat transcript parser.

Turns the lines of a chat document into a Transcript: the header map found
above the separator line, and the exchanges below it. Parsing is a single
pass keyed on line prefixes; no provider knowledge is involved.

Document layout:
    # topic: ...            header lines ("# key: value" / "- key: value")
    - max_full_exchanges: 1
    ---                     separator
    💬: question            user turn (text after the prefix is content)
    @@path/to/file          file reference (question only, column 1)
    🤖:[Agent]              assistant turn
    🧠: reasoning line
    answer text
    📝: summary line
    🔒: private notes       ignored until the next turn
"""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence
from typing import Any

from colloquy.config.app import ChatSyntaxConfig
from colloquy.errors import MalformedHeaderError
from colloquy.transcript.models import Exchange, FileReference, MetaLine, TextSpan, Transcript

logger = logging.getLogger(__name__)

_HEADER_PATTERN = re.compile(r"^[-#] ([A-Za-z0-9]+): (.*)")
_CONFIG_PATTERN = re.compile(r"^- ([A-Za-z0-9_]+): (.*)")
_NUMBER_PATTERN = re.compile(r"^[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?$")
_FENCE_PREFIX = "```"

# "- key: value" headers that select the agent rather than tune the request
RESERVED_HEADER_KEYS = frozenset({"file", "model", "provider", "role"})


def coerce_number(value: str) -> int | float | str:
    """Return ``value`` as an int or float when it looks numeric."""
    text = value.strip()
    if not _NUMBER_PATTERN.match(text):
        return value
    if re.fullmatch(r"[-+]?\d+", text):
        return int(text)
    return float(text)


def find_header_end(lines: Sequence[str], separator: str = "---") -> int:
    """
    Locate the header separator.

    Args:
        lines: Document lines
        separator: Prefix of the separator line

    Returns:
        1-based line number of the first line starting with ``separator``

    Raises:
        MalformedHeaderError: If no separator line exists
    """
    for i, line in enumerate(lines, start=1):
        if line.startswith(separator):
            return i
    raise MalformedHeaderError(separator)


def parse_headers(lines: Sequence[str], header_end: int) -> dict[str, Any]:
    """Parse ``# key: value`` / ``- key: value`` lines above the separator."""
    headers: dict[str, Any] = {}
    for line in lines[:header_end]:
        match = _HEADER_PATTERN.match(line)
        if match:
            key, value = match.group(1), match.group(2)
            if key == "tags":
                headers[key] = value.split()
            else:
                headers[key] = value

        config_match = _CONFIG_PATTERN.match(line)
        if config_match and config_match.group(1) not in RESERVED_HEADER_KEYS:
            headers[f"config_{config_match.group(1)}"] = coerce_number(config_match.group(2))
    return headers


class TranscriptParser:
    """Parses chat documents into Transcript objects."""

    def __init__(self, syntax: ChatSyntaxConfig | None = None):
        self.syntax = syntax or ChatSyntaxConfig()
        prefix = re.escape(self.syntax.file_reference_prefix)
        self._file_ref_pattern = re.compile(rf"^{prefix}\s*([^:]+)")
        self._closed_tag_pattern = re.compile(rf"^{prefix}[^@]+{prefix}")

    def parse_text(self, text: str) -> Transcript:
        """Parse a whole document, locating the header separator first."""
        lines = text.split("\n")
        header_end = find_header_end(lines, self.syntax.header_separator)
        return self.parse(lines, header_end)

    def parse(self, lines: Sequence[str], header_end: int) -> Transcript:
        """
        Parse document lines into a Transcript.

        Args:
            lines: All document lines
            header_end: 1-based line number of the header separator

        Returns:
            Transcript with headers and exchanges in document order
        """
        syntax = self.syntax
        transcript = Transcript(headers=parse_headers(lines, header_end), header_end=header_end)

        current: Exchange | None = None
        component: str | None = None
        parts: list[str] = []
        local_start: int | None = None
        in_fence = False

        def close(end_line: int) -> None:
            if current is None or component is None:
                return
            span = current.question if component == "question" else current.answer
            assert span is not None
            span.end_line = end_line
            span.content = "\n".join(parts).strip()

        for i in range(header_end + 1, len(lines) + 1):
            line = lines[i - 1]

            if local_start is None and line.startswith(syntax.local_prefix):
                local_start = i

            elif line.startswith(syntax.user_prefix) or line.startswith(syntax.legacy_user_prefix):
                close((local_start or i) - 1)
                prefix = (
                    syntax.user_prefix
                    if line.startswith(syntax.user_prefix)
                    else syntax.legacy_user_prefix
                )
                current = Exchange(question=TextSpan(start_line=i, end_line=i, content=""))
                transcript.exchanges.append(current)
                component = "question"
                parts = [line[len(prefix) :]]
                local_start = None
                in_fence = False

            elif line.startswith(syntax.assistant_prefix):
                component_start = local_start or i
                close(component_start - 1)
                if current is None:
                    logger.debug(f"Assistant turn at line {i} has no question, synthesizing one")
                    current = Exchange(
                        question=TextSpan(
                            start_line=header_end + 1,
                            end_line=component_start - 1,
                            content="",
                        )
                    )
                    transcript.exchanges.append(current)
                current.answer = TextSpan(start_line=i, end_line=i, content="")
                component = "answer"
                parts = []
                local_start = None
                in_fence = False

            elif component == "answer" and line.startswith(syntax.summary_prefix):
                assert current is not None
                current.summary = MetaLine(
                    line=i, content=line[len(syntax.summary_prefix) :].strip()
                )

            elif component == "answer" and line.startswith(syntax.reasoning_prefix):
                assert current is not None
                current.reasoning = MetaLine(
                    line=i, content=line[len(syntax.reasoning_prefix) :].strip()
                )

            elif local_start is None and current is not None and component is not None:
                parts.append(line)
                if component != "question":
                    continue
                if line.lstrip().startswith(_FENCE_PREFIX):
                    in_fence = not in_fence
                    continue
                if in_fence or self._closed_tag_pattern.match(line):
                    continue
                match = self._file_ref_pattern.match(line)
                if match:
                    path = match.group(1).strip()
                    current.question.file_references.append(
                        FileReference(raw_directive=line, path=path, line=i)
                    )
                    logger.debug(f"Found file reference at line {i}: {path}")

        close(len(lines))
        return transcript


def parse_transcript(
    lines: Sequence[str],
    header_end: int,
    syntax: ChatSyntaxConfig | None = None,
) -> Transcript:
    """Parse ``lines`` with a default-configured parser."""
    return TranscriptParser(syntax).parse(lines, header_end)


def find_exchange_at_line(transcript: Transcript, line: int) -> tuple[int | None, str | None]:
    """
    Find the exchange whose question or answer span contains ``line``.

    Returns:
        (exchange index, "question" | "answer"), or (None, None) if no span matches
    """
    for index, exchange in enumerate(transcript.exchanges):
        if exchange.question.contains(line):
            return index, "question"
        if exchange.answer is not None and exchange.answer.contains(line):
            return index, "answer"
    return None, None


def span_lines(lines: Sequence[str], span: TextSpan) -> list[str]:
    """Return the original document lines covered by ``span``."""
    if span.end_line < span.start_line:
        return []
    return list(lines[span.start_line - 1 : span.end_line])
