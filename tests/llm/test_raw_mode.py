"""Tests for raw request/response mode."""

import pytest

from colloquy.llm.raw import RawResponseDecoder, extract_raw_payload

pytestmark = pytest.mark.unit


class TestExtractRawPayload:
    """Tests for extract_raw_payload."""

    def test_json_block(self) -> None:
        """The first json block's object is returned."""
        question = 'send this\n```json\n{"model": "x", "messages": []}\n```\nthanks'
        assert extract_raw_payload(question) == {"model": "x", "messages": []}

    def test_no_block(self) -> None:
        """Questions without a json block have no payload."""
        assert extract_raw_payload("plain question") is None

    def test_invalid_json(self) -> None:
        """Invalid JSON yields no payload."""
        assert extract_raw_payload("```json\n{nope\n```") is None

    def test_non_object(self) -> None:
        """Only objects are accepted as bodies."""
        assert extract_raw_payload("```json\n[1, 2]\n```") is None


class TestRawResponseDecoder:
    """Tests for RawResponseDecoder."""

    def test_fences_stream(self) -> None:
        """The stream is passed through verbatim inside a json fence."""
        decoder = RawResponseDecoder("openai")
        state = decoder.new_state()

        first, _, state = decoder.decode_chunk(b'data: {"a":', state)
        second, _, state = decoder.decode_chunk(b" 1}\n", state)
        tail, _, state = decoder.finish(state)

        assert first == '```json\ndata: {"a":'
        assert second == " 1}\n"
        assert state.text == '```json\ndata: {"a": 1}\n\n```'
        assert tail == "\n```"

    def test_empty_stream(self) -> None:
        """An empty stream stays empty."""
        decoder = RawResponseDecoder("openai")
        text, _, state = decoder.finish(decoder.new_state())
        assert text == ""
        assert state.text == ""
