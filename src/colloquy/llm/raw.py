"""
Raw request/response mode.

Raw request mode sends a ```json block found in the question as the request
body. Raw response mode skips text extraction and shows the stream verbatim
inside a json fence.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from colloquy.llm.models import DecodeState, UsageStats

logger = logging.getLogger(__name__)

_JSON_BLOCK = re.compile(r"\s*```json\s*(.*?)\n```", re.DOTALL)

FENCE_OPEN = "```json\n"
FENCE_CLOSE = "\n```"


def extract_raw_payload(question: str) -> dict[str, Any] | None:
    """
    Return the JSON object in the question's first ```json block.

    Returns None when there is no block or it does not hold a JSON object.
    """
    match = _JSON_BLOCK.search(question)
    if not match:
        return None
    try:
        payload = json.loads(match.group(1))
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse JSON in raw request mode: {e}")
        return None
    if not isinstance(payload, dict):
        logger.warning("Raw request block is not a JSON object")
        return None
    return payload


class RawResponseDecoder:
    """Passes the stream through unchanged, fenced as a json block."""

    def __init__(self, provider: str):
        self.provider = provider

    def new_state(self) -> DecodeState:
        return DecodeState(provider=self.provider)

    def decode_chunk(
        self, raw_bytes: bytes, state: DecodeState
    ) -> tuple[str, UsageStats | None, DecodeState]:
        text = state.decoder.decode(raw_bytes)
        if not text:
            return "", None, state
        if not state.started:
            state.started = True
            text = FENCE_OPEN + text
        state.text += text
        return text, None, state

    def finish(self, state: DecodeState) -> tuple[str, UsageStats | None, DecodeState]:
        tail = state.decoder.decode(b"", final=True)
        if tail and not state.started:
            state.started = True
            tail = FENCE_OPEN + tail
        if state.started and not state.text.rstrip().endswith("```"):
            tail += FENCE_CLOSE
        state.text += tail
        return tail, None, state
