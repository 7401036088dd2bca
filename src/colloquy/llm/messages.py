"""
Native messages payload adapter (anthropic).

System messages travel as a separate ``system`` array of text blocks; the
stream is a sequence of typed events where content_block_start and
content_block_delta carry the text.
"""

from __future__ import annotations

import logging
from typing import Any

from colloquy.errors import ProviderErrorEvent
from colloquy.llm.base import PayloadAdapter, find_error_message
from colloquy.llm.models import ConfiguredModel, DecodeState, Message, SessionFlags, UsageStats
from colloquy.llm.params import resolve_params

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
BETA_DEFAULT = "messages-2023-12-15"
BETA_WEB_FETCH = "web-fetch-2025-09-10"
EPHEMERAL_CACHE = {"type": "ephemeral"}

WEB_TOOLS: list[dict[str, Any]] = [
    {"type": "web_search_20250305", "name": "web_search", "max_uses": 5},
    {"type": "web_fetch_20250910", "name": "web_fetch", "max_uses": 5},
]


def _usage_from(raw: Any) -> UsageStats | None:
    if not isinstance(raw, dict):
        return None
    return UsageStats(
        input_tokens=int(raw.get("input_tokens") or 0),
        output_tokens=int(raw.get("output_tokens") or 0),
        cache_read_tokens=int(raw.get("cache_read_input_tokens") or 0),
        cache_creation_tokens=int(raw.get("cache_creation_input_tokens") or 0),
    )


class MessagesAdapter(PayloadAdapter):
    """Adapter for the native messages family."""

    family = "messages"

    def build_body(
        self, messages: list[Message], model: ConfiguredModel, flags: SessionFlags
    ) -> dict[str, Any]:
        system_blocks: list[dict[str, Any]] = []
        turns: list[dict[str, Any]] = []
        for message in messages:
            if not message.role:
                continue
            if message.role == "system":
                block: dict[str, Any] = {"type": "text", "text": message.content}
                if message.cache_hint:
                    block["cache_control"] = dict(EPHEMERAL_CACHE)
                system_blocks.append(block)
            else:
                turns.append({"role": message.role, "content": message.content})

        body: dict[str, Any] = {"model": model.name, "stream": True, "messages": turns}
        body.update(
            resolve_params(self.name, model, self.family, self.provider.default_max_tokens)
        )
        if system_blocks:
            body["system"] = system_blocks
        if flags.web_search:
            body["tools"] = [dict(tool) for tool in WEB_TOOLS]
        return body

    def build_headers(self, body: dict[str, Any], flags: SessionFlags) -> dict[str, str]:
        tools = body.get("tools") or []
        uses_fetch = any(isinstance(t, dict) and t.get("name") == "web_fetch" for t in tools)
        return {
            "anthropic-version": ANTHROPIC_VERSION,
            "anthropic-beta": BETA_WEB_FETCH if uses_fetch else BETA_DEFAULT,
        }

    def auth_headers(self, bearer: str) -> dict[str, str]:
        return {"x-api-key": bearer}

    def extract(self, obj: Any, state: DecodeState) -> tuple[str, UsageStats | None]:
        if not isinstance(obj, dict):
            return "", None

        event_type = obj.get("type")
        if event_type == "error" or "error" in obj:
            message = find_error_message(obj) or "unknown error"
            raise ProviderErrorEvent(self.name, message, obj)

        if event_type == "message_start":
            return "", _usage_from((obj.get("message") or {}).get("usage"))
        if event_type == "message_delta":
            return "", _usage_from(obj.get("usage"))
        if event_type == "content_block_start":
            block = obj.get("content_block") or {}
            return str(block.get("text") or ""), None
        if event_type == "content_block_delta":
            delta = obj.get("delta") or {}
            return str(delta.get("text") or ""), None
        return "", None
