"""
Exception taxonomy for colloquy.

Structural errors (headers, configuration) are fatal to the current operation.
Streaming errors are either recovered locally (DecodeFailure) or carried to the
caller inside a completion result (TransportSpawnError, EmptyStreamError,
ProviderErrorEvent).
"""

from __future__ import annotations

from typing import Any


class ColloquyError(Exception):
    """Base exception for colloquy errors."""

    pass


class MalformedHeaderError(ColloquyError):
    """Raised when a transcript has no header separator line."""

    def __init__(self, separator: str = "---"):
        self.separator = separator
        super().__init__(
            f"Error while parsing headers: {separator} not found. Check your chat template."
        )


class BusyConflictError(ColloquyError):
    """Raised when a document already has an active query."""

    def __init__(self, document_key: str, active_query_id: str | None = None):
        self.document_key = document_key
        self.active_query_id = active_query_id
        super().__init__(
            f"A query [{active_query_id}] is already running for document {document_key}"
        )


class TransportSpawnError(ColloquyError):
    """Raised when the transport child process could not be started."""

    def __init__(self, argv0: str, reason: str):
        self.argv0 = argv0
        self.reason = reason
        super().__init__(f"Failed to start '{argv0}': {reason}")


class EmptyStreamError(ColloquyError):
    """Raised when a stream finished without producing any text."""

    def __init__(self, provider: str, detail: str = ""):
        self.provider = provider
        self.detail = detail
        message = f"{provider} response is empty"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class DecodeFailure(ColloquyError):
    """Raised for a malformed stream fragment, or when a decoder fails at end of stream."""

    def __init__(self, provider: str, fragment: str, reason: str = ""):
        self.provider = provider
        self.fragment = fragment
        self.reason = reason
        super().__init__(f"Could not decode {provider} fragment: {reason or fragment[:80]}")


class ProviderErrorEvent(ColloquyError):
    """A wire-level error object embedded in a provider stream."""

    def __init__(self, provider: str, message: str, payload: dict[str, Any] | None = None):
        self.provider = provider
        self.message = message
        self.payload = payload or {}
        super().__init__(f"{provider} error: {message}")


class UnknownProviderError(ColloquyError):
    """Raised when a provider is missing from the configuration."""

    def __init__(self, provider: str, available: list[str]):
        self.provider = provider
        self.available = available
        super().__init__(
            f"Provider '{provider}' is not configured. Available providers: {available}"
        )


class SecretResolutionError(ColloquyError):
    """Raised when a provider secret cannot be resolved."""

    def __init__(self, provider: str, reason: str):
        self.provider = provider
        self.reason = reason
        super().__init__(f"{provider} bearer token is missing: {reason}")
