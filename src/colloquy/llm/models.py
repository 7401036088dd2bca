"""LLM data models.

Dataclasses for the provider-agnostic message list, model descriptors,
provider records, request specs and the incremental decode state shared by
all payload adapters.
"""

from __future__ import annotations

import codecs
import copy
from dataclasses import dataclass, field
from typing import Any, Literal

Role = Literal["system", "user", "assistant", "tool"]

REDACTED = "***"


@dataclass
class Message:
    """One message of the context sent to a provider."""

    role: Role | Literal[""]
    """Message role. The empty role marks the unresolved system slot."""

    content: str
    """Message text."""

    cache_hint: bool = False
    """Whether the provider may cache the prefix ending at this message."""


@dataclass
class ProviderConfig:
    """Runtime record for one configured provider."""

    name: str
    endpoint_template: str
    secret_handle: str
    """Opaque key handed to the secret resolver."""

    default_max_tokens: int | None = None
    supports_reasoning_effort: bool = False
    adapter: str | None = None
    """Wire family override; inferred from ``name`` when None."""


@dataclass(frozen=True)
class NamedModel:
    """A model given by name only."""

    name: str


@dataclass(frozen=True)
class ConfiguredModel:
    """A model name plus per-request overrides (temperature, top_p, ...)."""

    name: str
    params: dict[str, Any] = field(default_factory=dict)
    """Request overrides keyed by their schema name (not the wire name)."""

    @property
    def temperature(self) -> float | None:
        return self.params.get("temperature")

    @property
    def top_p(self) -> float | None:
        return self.params.get("top_p")

    @property
    def max_tokens(self) -> int | None:
        return self.params.get("max_tokens")

    @property
    def reasoning_effort(self) -> str | None:
        return self.params.get("reasoning_effort")

    def with_name(self, name: str) -> ConfiguredModel:
        return ConfiguredModel(name=name, params=dict(self.params))


# Tagged union accepted at the boundary; adapters only see ConfiguredModel
ModelDescriptor = NamedModel | ConfiguredModel


def normalize_model(model: str | dict[str, Any] | ModelDescriptor) -> ConfiguredModel:
    """
    Normalize any model form into a ConfiguredModel.

    Args:
        model: Bare name, mapping with a ``model`` key plus overrides, or a descriptor

    Raises:
        ValueError: If a mapping has no model name
    """
    if isinstance(model, ConfiguredModel):
        return model
    if isinstance(model, NamedModel):
        return ConfiguredModel(name=model.name)
    if isinstance(model, str):
        return ConfiguredModel(name=model)
    if isinstance(model, dict):
        name = model.get("model")
        if not name:
            raise ValueError(f"Model mapping has no 'model' key: {model}")
        params = {k: v for k, v in model.items() if k != "model"}
        return ConfiguredModel(name=str(name), params=params)
    raise ValueError(f"Unsupported model descriptor: {model!r}")


@dataclass
class UsageStats:
    """Token accounting reported by a provider."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0

    def merge(self, other: UsageStats | None) -> UsageStats:
        """Overlay non-zero fields from ``other``; streams report usage piecemeal."""
        if other is None:
            return self
        return UsageStats(
            input_tokens=other.input_tokens or self.input_tokens,
            output_tokens=other.output_tokens or self.output_tokens,
            cache_read_tokens=other.cache_read_tokens or self.cache_read_tokens,
            cache_creation_tokens=other.cache_creation_tokens or self.cache_creation_tokens,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "cache_read_tokens": self.cache_read_tokens,
            "cache_creation_tokens": self.cache_creation_tokens,
        }


@dataclass
class SessionFlags:
    """Per-document request switches."""

    web_search: bool = False
    """Attach server-side web tools (native messages family only)."""

    raw_payload: dict[str, Any] | None = None
    """A complete request body supplied by the user (raw request mode)."""

    raw_response: bool = False
    """Return the undecoded stream fenced as json instead of extracted text."""


@dataclass
class RequestSpec:
    """Everything the transport needs for one request, minus the secret."""

    provider: str
    endpoint: str
    headers: dict[str, str]
    body: dict[str, Any]
    model: str = ""

    def redacted(self) -> dict[str, Any]:
        """Return a display-safe view with auth values masked."""
        headers = {
            k: (REDACTED if k.lower() in {"authorization", "x-api-key", "api-key"} else v)
            for k, v in self.headers.items()
        }
        return {
            "provider": self.provider,
            "endpoint": self.endpoint.replace("{{secret}}", REDACTED),
            "headers": headers,
            "body": copy.deepcopy(self.body),
        }


@dataclass
class DecodeState:
    """Incremental decode state for one stream."""

    provider: str
    decoder: codecs.IncrementalDecoder = field(
        default_factory=lambda: codecs.getincrementaldecoder("utf-8")(errors="replace")
    )
    buffer: str = ""
    """Text received after the last complete line (or event)."""

    raw_response: str = ""
    """Non-empty events seen before any text was extracted, newline-terminated."""

    text: str = ""
    """Text extracted so far."""

    usage: UsageStats | None = None
    error: Exception | None = None
    """First provider error object found in the stream."""

    started: bool = False
    """Raw mode: whether the opening fence has been emitted."""
