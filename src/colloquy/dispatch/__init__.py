"""Stream dispatching: one provider request from secret to completion."""

from colloquy.dispatch.dispatcher import QueryStream, StreamDispatcher, build_curl_argv
from colloquy.dispatch.events import PendingQuery, StreamEvent, StreamResult, TextDelta
from colloquy.dispatch.secrets import ConfigSecretResolver, SecretResolver
from colloquy.dispatch.store import QueryStore

__all__ = [
    "ConfigSecretResolver",
    "PendingQuery",
    "QueryStore",
    "QueryStream",
    "SecretResolver",
    "StreamDispatcher",
    "StreamEvent",
    "StreamResult",
    "TextDelta",
    "build_curl_argv",
]
