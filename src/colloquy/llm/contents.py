"""
Contents/parts payload adapter (googleai).

The body carries ``contents[].parts[].text`` with roles remapped
(system -> user, assistant -> model) and adjacent same-role entries merged.
The model and the secret are embedded in the endpoint URL. The response is
a JSON array streamed object by object, so events are cut out of the buffer
with a JSON decoder instead of by line.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from colloquy.errors import DecodeFailure, ProviderErrorEvent
from colloquy.llm.base import PayloadAdapter, find_error_message, strip_sse_prefix
from colloquy.llm.models import ConfiguredModel, DecodeState, Message, SessionFlags, UsageStats
from colloquy.llm.params import resolve_params

logger = logging.getLogger(__name__)

ROLE_MAP = {"system": "user", "user": "user", "assistant": "model", "tool": "user"}

HARM_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

# Separators between array elements in the stream
_SKIPPABLE = " \t\r\n,[]"

_decoder = json.JSONDecoder()


def _fragment_end(buffer: str, pos: int) -> int | None:
    """
    End of the undecodable fragment starting at ``pos``.

    A bracketed fragment ends at its balancing bracket; anything else runs
    up to the next object. None while the fragment may still be incomplete.
    """
    if buffer[pos] not in "{[":
        start = buffer.find("{", pos + 1)
        return start if start != -1 else None

    depth = 0
    in_string = False
    escaped = False
    for index in range(pos, len(buffer)):
        char = buffer[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
            if depth == 0:
                return index + 1
    return None


def to_contents(messages: list[Message]) -> list[dict[str, Any]]:
    """
    Convert messages to contents entries, merging adjacent same-role turns.

    The wire format rejects two consecutive entries with the same role.
    """
    contents: list[dict[str, Any]] = []
    for message in messages:
        if not message.role:
            continue
        role = ROLE_MAP[message.role]
        if contents and contents[-1]["role"] == role:
            contents[-1]["parts"].append({"text": message.content})
        else:
            contents.append({"role": role, "parts": [{"text": message.content}]})
    return contents


class ContentsAdapter(PayloadAdapter):
    """Adapter for the contents/parts family."""

    family = "contents"

    def build_body(
        self, messages: list[Message], model: ConfiguredModel, flags: SessionFlags
    ) -> dict[str, Any]:
        return {
            "contents": to_contents(messages),
            "safetySettings": [
                {"category": category, "threshold": "BLOCK_NONE"} for category in HARM_CATEGORIES
            ],
            "generationConfig": resolve_params(
                self.name, model, self.family, self.provider.default_max_tokens
            ),
        }

    def finalize_body(self, body: dict[str, Any]) -> dict[str, Any]:
        # the model travels in the URL
        body.pop("model", None)
        return body

    def auth_headers(self, bearer: str) -> dict[str, str]:
        return {}

    def split_events(self, state: DecodeState, final: bool) -> list[str]:
        events: list[str] = []
        buffer = state.buffer
        pos = 0
        while True:
            while pos < len(buffer) and buffer[pos] in _SKIPPABLE:
                pos += 1
            if buffer.startswith("data:", pos):
                pos += len("data:")
                continue
            if pos >= len(buffer):
                break
            try:
                _, end = _decoder.raw_decode(buffer, pos)
            except json.JSONDecodeError:
                end = _fragment_end(buffer, pos)
                if end is None:
                    if final:
                        # unterminated or malformed tail; hand it over to be skipped
                        events.append(buffer[pos:])
                        pos = len(buffer)
                    break
                # complete but malformed; hand it over to be skipped and resync
            events.append(buffer[pos:end])
            pos = end
        state.buffer = buffer[pos:]
        return events

    def parse_event(self, event: str) -> Any | None:
        payload = strip_sse_prefix(event)
        if not payload:
            return None
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise DecodeFailure(self.name, payload, str(e)) from e

    def extract(self, obj: Any, state: DecodeState) -> tuple[str, UsageStats | None]:
        message = find_error_message(obj)
        if message:
            raise ProviderErrorEvent(self.name, message, obj)
        if not isinstance(obj, dict):
            return "", None

        usage = None
        metadata = obj.get("usageMetadata")
        if isinstance(metadata, dict):
            usage = UsageStats(
                input_tokens=int(metadata.get("promptTokenCount") or 0),
                output_tokens=int(metadata.get("candidatesTokenCount") or 0),
                cache_read_tokens=int(metadata.get("cachedContentTokenCount") or 0),
            )

        texts: list[str] = []
        for candidate in obj.get("candidates") or []:
            parts = ((candidate or {}).get("content") or {}).get("parts") or []
            texts.extend(str(part.get("text") or "") for part in parts if isinstance(part, dict))
            break
        return "".join(texts), usage
