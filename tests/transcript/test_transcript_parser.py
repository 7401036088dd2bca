"""Tests for the transcript parser."""

import pytest

from colloquy.config.app import ChatSyntaxConfig
from colloquy.errors import MalformedHeaderError
from colloquy.transcript.parser import (
    TranscriptParser,
    coerce_number,
    find_exchange_at_line,
    find_header_end,
    parse_headers,
    parse_transcript,
    span_lines,
)

pytestmark = pytest.mark.unit


def _parse(text: str):
    return TranscriptParser().parse_text(text)


class TestFindHeaderEnd:
    """Tests for find_header_end."""

    def test_returns_separator_line(self) -> None:
        """The separator line number is 1-based."""
        assert find_header_end(["# topic: x", "---", "💬: hi"]) == 2

    def test_separator_is_a_prefix_match(self) -> None:
        """Any line starting with the separator ends the header."""
        assert find_header_end(["---------"]) == 1

    def test_missing_separator_raises(self) -> None:
        """A document without a separator is malformed."""
        with pytest.raises(MalformedHeaderError) as exc_info:
            find_header_end(["# topic: x", "💬: hi"])
        assert "---" in str(exc_info.value)

    def test_custom_separator(self) -> None:
        """The separator is configurable."""
        assert find_header_end(["a", "===", "b"], separator="===") == 2


class TestParseHeaders:
    """Tests for header parsing."""

    def test_hash_and_dash_headers(self) -> None:
        """Both '# key: value' and '- key: value' lines are headers."""
        headers = parse_headers(["# topic: Rust lifetimes", "- model: gpt-4o", "---"], 3)
        assert headers["topic"] == "Rust lifetimes"
        assert headers["model"] == "gpt-4o"

    def test_tags_split_on_whitespace(self) -> None:
        """The tags header becomes a list."""
        headers = parse_headers(["# tags: rust  async\tdb", "---"], 2)
        assert headers["tags"] == ["rust", "async", "db"]

    def test_config_headers_coerce_numbers(self) -> None:
        """Non-reserved dash headers become numeric config overrides."""
        headers = parse_headers(
            ["- max_full_exchanges: 3", "- temperature: 0.5", "- style: terse", "---"], 4
        )
        assert headers["config_max_full_exchanges"] == 3
        assert headers["config_temperature"] == 0.5
        assert headers["config_style"] == "terse"

    def test_reserved_keys_are_not_config(self) -> None:
        """Agent-selecting headers do not produce config overrides."""
        headers = parse_headers(
            ["- provider: anthropic", "- model: x", "- role: y", "- file: z", "---"], 5
        )
        assert not any(key.startswith("config_") for key in headers)

    def test_lines_below_separator_ignored(self) -> None:
        """Only lines up to the separator are headers."""
        headers = parse_headers(["---", "# topic: nope"], 1)
        assert headers == {}


class TestCoerceNumber:
    """Tests for coerce_number."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("3", 3), ("-2", -2), ("0.25", 0.25), ("1e3", 1000.0), ("abc", "abc"), ("3 apples", "3 apples")],
    )
    def test_coercion(self, value: str, expected: object) -> None:
        """Numeric strings become ints or floats; others stay strings."""
        assert coerce_number(value) == expected


class TestTranscriptParser:
    """Tests for exchange parsing."""

    def test_two_exchanges(self, two_exchange_chat: str) -> None:
        """Questions, answers, summaries and reasoning are located by line."""
        transcript = _parse(two_exchange_chat)

        assert transcript.header_end == 3
        assert transcript.topic == "testing"
        assert len(transcript.exchanges) == 2

        first = transcript.exchanges[0]
        assert first.question.start_line == 5
        assert first.question.end_line == 6
        assert first.question.content == "What is 2+2?"
        assert first.answer is not None
        assert first.answer.start_line == 7
        assert first.answer.end_line == 11
        assert first.answer.content == "It is 4."
        assert first.summary is not None
        assert first.summary.line == 10
        assert first.summary.content == "you asked about 2+2, I answered 4"
        assert first.reasoning is not None
        assert first.reasoning.content == "simple arithmetic"

        second = transcript.exchanges[1]
        assert second.question.content == "And 3+3?"
        assert second.answer is None
        assert second.question.end_line == 13

    def test_multiline_question(self) -> None:
        """Question content spans until the next turn."""
        transcript = _parse("---\n💬: line one\nline two\n\nline three\n🤖:[A]\nok")
        assert transcript.exchanges[0].question.content == "line one\nline two\n\nline three"

    def test_legacy_user_prefix(self) -> None:
        """The older user prefix still starts a question."""
        transcript = _parse("---\n🗨: old style question")
        assert transcript.exchanges[0].question.content == "old style question"

    def test_local_section_excluded(self) -> None:
        """Private sections are dropped from the turn they follow."""
        transcript = _parse("---\n💬: public\n🔒: private note\nsecret\n🤖:[A]\nanswer")
        exchange = transcript.exchanges[0]
        assert exchange.question.content == "public"
        assert exchange.question.end_line == 2
        assert exchange.answer is not None
        assert exchange.answer.start_line == 5

    def test_local_section_ends_at_next_turn(self) -> None:
        """Lines after the next turn prefix are parsed normally again."""
        transcript = _parse("---\n🔒: scratch\n💬: real question\nmore")
        assert len(transcript.exchanges) == 1
        assert transcript.exchanges[0].question.content == "real question\nmore"

    def test_orphan_answer_synthesizes_question(self) -> None:
        """An assistant turn before any question gets an empty question."""
        transcript = _parse("---\nintro text\n🤖:[A]\nhello")
        assert len(transcript.exchanges) == 1
        exchange = transcript.exchanges[0]
        assert exchange.question.content == ""
        assert exchange.question.start_line == 2
        assert exchange.answer is not None
        assert exchange.answer.content == "hello"

    def test_text_before_first_turn_ignored(self) -> None:
        """Lines between the separator and the first turn belong to no exchange."""
        transcript = _parse("---\nnotes\n💬: q")
        assert transcript.exchanges[0].question.start_line == 3

    def test_no_exchanges(self) -> None:
        """A header-only document has no exchanges."""
        assert _parse("# topic: x\n---\n").exchanges == []


class TestFileReferences:
    """Tests for file reference detection inside questions."""

    def test_file_reference_detected(self) -> None:
        """Column-1 markers in a question are file references."""
        transcript = _parse("---\n💬: review this\n@@src/main.py\n@@ docs/")
        refs = transcript.exchanges[0].question.file_references
        assert [r.path for r in refs] == ["src/main.py", "docs/"]
        assert refs[0].line == 3
        assert refs[0].raw_directive == "@@src/main.py"

    def test_reference_inside_fence_ignored(self) -> None:
        """Markers inside fenced code are literal text."""
        transcript = _parse("---\n💬: example\n```\n@@not/a/ref\n```\n@@real.py")
        refs = transcript.exchanges[0].question.file_references
        assert [r.path for r in refs] == ["real.py"]

    def test_closed_tag_ignored(self) -> None:
        """A marker closed on the same line is not a reference."""
        transcript = _parse("---\n💬: q\n@@tag@@ text")
        assert transcript.exchanges[0].question.file_references == []

    def test_references_only_in_questions(self) -> None:
        """Markers inside answers are ignored."""
        transcript = _parse("---\n💬: q\n🤖:[A]\n@@answer.py")
        assert transcript.exchanges[0].question.file_references == []
        assert transcript.exchanges[0].has_file_references is False

    def test_indented_marker_ignored(self) -> None:
        """Only markers in column 1 count."""
        transcript = _parse("---\n💬: q\n  @@file.py")
        assert transcript.exchanges[0].question.file_references == []

    def test_custom_marker(self) -> None:
        """The marker follows the configured syntax."""
        parser = TranscriptParser(ChatSyntaxConfig(file_reference_prefix="##"))
        transcript = parser.parse_text("---\n💬: q\n##notes.txt")
        assert [r.path for r in transcript.exchanges[0].question.file_references] == ["notes.txt"]


class TestLookups:
    """Tests for exchange lookups by line."""

    def test_find_exchange_at_line(self, two_exchange_chat: str) -> None:
        """Lines map to the exchange and component containing them."""
        transcript = _parse(two_exchange_chat)
        assert find_exchange_at_line(transcript, 5) == (0, "question")
        assert find_exchange_at_line(transcript, 9) == (0, "answer")
        assert find_exchange_at_line(transcript, 12) == (1, "question")
        assert find_exchange_at_line(transcript, 2) == (None, None)

    def test_span_lines(self, two_exchange_chat: str) -> None:
        """span_lines returns the original lines of a span."""
        lines = two_exchange_chat.split("\n")
        transcript = parse_transcript(lines, find_header_end(lines))
        assert span_lines(lines, transcript.exchanges[0].question) == ["💬: What is 2+2?", ""]

    def test_to_dict(self, two_exchange_chat: str) -> None:
        """to_dict produces a JSON-friendly structure."""
        data = _parse(two_exchange_chat).to_dict()
        assert data["header_end"] == 3
        assert data["exchanges"][0]["summary"]["line"] == 10
        assert data["exchanges"][1]["answer"] is None


LOCAL_SECTION_CHAT = "# topic: t\n---\n💬: q1\nmore\n🔒: private\nhidden\n🤖:[A]\nans\n📝: sum\n💬: q2\n"
ORPHAN_ANSWER_CHAT = "---\n🤖:[A]\nanswer only\n🧠: why\n💬: next\n"
FENCED_REFERENCE_CHAT = (
    "# topic: f\n---\n\n💬: look\n```\n@@not/a/ref\n```\n@@real.txt\n\n"
    "🤖:[A]\n🧠: r\nok\n📝: s\n\n"
)


def _reassemble(text: str) -> str:
    """Rebuild a document from its header, the spans and the local sections between them."""
    lines = text.split("\n")
    transcript = _parse(text)
    out = list(lines[: transcript.header_end])
    covered = transcript.header_end
    for exchange in transcript.exchanges:
        for span in (exchange.question, exchange.answer):
            if span is None:
                continue
            gap = lines[covered : span.start_line - 1]
            content = [line for line in gap if line.strip()]
            assert not content or content[0].startswith("🔒:")
            out += gap
            out += span_lines(lines, span)
            covered = max(covered, span.end_line)
    assert all(not line.strip() for line in lines[covered:])
    out += lines[covered:]
    return "\n".join(out)


class TestRoundTrip:
    """Tests that spans tile the document and parsing is stable."""

    @pytest.mark.parametrize(
        ("text", "spans"),
        [
            (LOCAL_SECTION_CHAT, [((3, 4), (7, 9)), ((10, 11), None)]),
            (ORPHAN_ANSWER_CHAT, [((2, 1), (2, 4)), ((5, 6), None)]),
            (FENCED_REFERENCE_CHAT, [((4, 9), (10, 15))]),
        ],
        ids=["local-section", "orphan-answer", "fenced-reference"],
    )
    def test_spans_reproduce_document(self, text: str, spans: list) -> None:
        """Header, spans and local sections reassemble the exact original text."""
        transcript = _parse(text)
        actual = [
            (
                (ex.question.start_line, ex.question.end_line),
                (ex.answer.start_line, ex.answer.end_line) if ex.answer else None,
            )
            for ex in transcript.exchanges
        ]
        assert actual == spans
        assert _reassemble(text) == text

    @pytest.mark.parametrize(
        "text",
        [LOCAL_SECTION_CHAT, ORPHAN_ANSWER_CHAT, FENCED_REFERENCE_CHAT],
        ids=["local-section", "orphan-answer", "fenced-reference"],
    )
    def test_parse_is_idempotent(self, text: str) -> None:
        """Parsing the same or the reassembled text gives equal transcripts."""
        first = _parse(text)
        assert _parse(text) == first
        assert _parse(_reassemble(text)) == first

    def test_meta_lines_and_references_survive(self) -> None:
        """Summary, reasoning and the unfenced reference are kept on reparse."""
        transcript = _parse(_reassemble(FENCED_REFERENCE_CHAT))
        exchange = transcript.exchanges[0]
        assert [ref.path for ref in exchange.question.file_references] == ["real.txt"]
        assert exchange.question.file_references[0].line == 8
        assert exchange.reasoning is not None and exchange.reasoning.content == "r"
        assert exchange.summary is not None and exchange.summary.content == "s"
        assert exchange.answer is not None and exchange.answer.content == "ok"
