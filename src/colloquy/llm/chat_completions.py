"""
Chat-completions payload adapter.

Covers openai, ollama, copilot, azure and any other provider speaking the
chat-completions wire format: a ``messages`` array in the body and an SSE
stream of objects nesting ``choices[0].delta.content``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from colloquy.errors import ProviderErrorEvent
from colloquy.llm.base import PayloadAdapter, find_error_message
from colloquy.llm.models import ConfiguredModel, DecodeState, Message, SessionFlags, UsageStats
from colloquy.llm.params import resolve_params

logger = logging.getLogger(__name__)

# Models that accept neither system messages nor sampling parameters
REASONING_MODEL_PATTERN = re.compile(r"^o[13]|^gpt-5|^gpt-4o-search-preview$")

COPILOT_EDITOR_VERSION = "vscode/1.85.1"
COPILOT_MODEL_PINS = {"gpt-4o": "gpt-4o-2024-05-13"}


def is_reasoning_model(model_name: str) -> bool:
    return REASONING_MODEL_PATTERN.search(model_name) is not None


class ChatCompletionsAdapter(PayloadAdapter):
    """Adapter for the chat-completions family."""

    family = "chat_completions"

    def prepare_model(self, model: ConfiguredModel) -> ConfiguredModel:
        if self.name == "copilot" and model.name in COPILOT_MODEL_PINS:
            return model.with_name(COPILOT_MODEL_PINS[model.name])
        return model

    def build_body(
        self, messages: list[Message], model: ConfiguredModel, flags: SessionFlags
    ) -> dict[str, Any]:
        reasoning = is_reasoning_model(model.name)
        wire_messages = [
            {"role": m.role, "content": m.content}
            for m in messages
            if m.role and not (reasoning and m.role == "system")
        ]

        params = resolve_params(
            self.name, model, self.family, self.provider.default_max_tokens
        )
        if not self.provider.supports_reasoning_effort:
            params.pop("reasoning_effort", None)

        body: dict[str, Any] = {
            "model": model.name,
            "stream": True,
            "messages": wire_messages,
            "stream_options": {"include_usage": True},
        }
        body.update(params)
        return body

    def build_headers(self, body: dict[str, Any], flags: SessionFlags) -> dict[str, str]:
        if self.name == "copilot":
            return {"editor-version": COPILOT_EDITOR_VERSION}
        return {}

    def auth_headers(self, bearer: str) -> dict[str, str]:
        if self.name == "azure":
            return {"api-key": bearer}
        headers = {"Authorization": f"Bearer {bearer}"}
        if self.name == "openai":
            # older proxies read the key from api-key
            headers["api-key"] = bearer
        return headers

    def extract(self, obj: Any, state: DecodeState) -> tuple[str, UsageStats | None]:
        message = find_error_message(obj)
        if message:
            raise ProviderErrorEvent(self.name, message, obj)
        if not isinstance(obj, dict):
            return "", None

        usage = None
        raw_usage = obj.get("usage")
        if isinstance(raw_usage, dict):
            details = raw_usage.get("prompt_tokens_details") or {}
            usage = UsageStats(
                input_tokens=int(raw_usage.get("prompt_tokens") or 0),
                output_tokens=int(raw_usage.get("completion_tokens") or 0),
                cache_read_tokens=int(details.get("cached_tokens") or 0),
            )

        text = ""
        choices = obj.get("choices") or []
        if choices and isinstance(choices[0], dict):
            delta = choices[0].get("delta") or {}
            text = delta.get("content") or ""
        return text, usage

    def recover_unstreamed(self, state: DecodeState) -> str:
        """Recover the content of a complete, non-streaming response body."""
        try:
            obj = json.loads(state.raw_response)
        except json.JSONDecodeError:
            return super().recover_unstreamed(state)

        if find_error_message(obj):
            return super().recover_unstreamed(state)

        choices = obj.get("choices") if isinstance(obj, dict) else None
        if choices and isinstance(choices[0], dict):
            content = (choices[0].get("message") or {}).get("content")
            if isinstance(content, str) and content:
                logger.debug(f"{self.name} returned a non-streaming response")
                return content
        return ""
