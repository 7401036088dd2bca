"""
Payload adapters for the supported provider families.

Adapters are selected by provider name; providers outside the known
families fall back to the chat-completions format.
"""

from colloquy.llm.base import PayloadAdapter, StreamDecoder
from colloquy.llm.chat_completions import ChatCompletionsAdapter
from colloquy.llm.contents import ContentsAdapter
from colloquy.llm.messages import MessagesAdapter
from colloquy.llm.models import (
    ConfiguredModel,
    DecodeState,
    Message,
    ModelDescriptor,
    NamedModel,
    ProviderConfig,
    RequestSpec,
    SessionFlags,
    UsageStats,
    normalize_model,
)
from colloquy.llm.raw import RawResponseDecoder, extract_raw_payload

ADAPTERS: dict[str, type[PayloadAdapter]] = {
    ChatCompletionsAdapter.family: ChatCompletionsAdapter,
    MessagesAdapter.family: MessagesAdapter,
    ContentsAdapter.family: ContentsAdapter,
}

PROVIDER_FAMILIES = {
    "openai": "chat_completions",
    "ollama": "chat_completions",
    "copilot": "chat_completions",
    "azure": "chat_completions",
    "anthropic": "messages",
    "claude": "messages",
    "googleai": "contents",
}


def family_for(provider: ProviderConfig) -> str:
    """Return the wire family of a provider."""
    return provider.adapter or PROVIDER_FAMILIES.get(provider.name, "chat_completions")


def get_adapter(provider: ProviderConfig) -> PayloadAdapter:
    """
    Create the payload adapter for a provider.

    Raises:
        ValueError: If the provider names an unknown adapter family
    """
    family = family_for(provider)
    adapter_cls = ADAPTERS.get(family)
    if adapter_cls is None:
        raise ValueError(f"Unknown adapter family '{family}' for provider '{provider.name}'")
    return adapter_cls(provider)


__all__ = [
    "ADAPTERS",
    "ChatCompletionsAdapter",
    "ConfiguredModel",
    "ContentsAdapter",
    "DecodeState",
    "Message",
    "MessagesAdapter",
    "ModelDescriptor",
    "NamedModel",
    "PayloadAdapter",
    "ProviderConfig",
    "RawResponseDecoder",
    "RequestSpec",
    "SessionFlags",
    "StreamDecoder",
    "UsageStats",
    "extract_raw_payload",
    "family_for",
    "get_adapter",
    "normalize_model",
]
