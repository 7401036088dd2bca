"""Base class for payload adapters.

A payload adapter translates the provider-agnostic message list into one
provider family's request (endpoint, headers, body) and owns that family's
incremental decode grammar for the streamed response.
"""

from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Protocol

from colloquy.errors import DecodeFailure, ProviderErrorEvent
from colloquy.llm.models import (
    ConfiguredModel,
    DecodeState,
    Message,
    ModelDescriptor,
    ProviderConfig,
    RequestSpec,
    SessionFlags,
    UsageStats,
    normalize_model,
)

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


class StreamDecoder(Protocol):
    """Anything that turns stdout bytes of one stream into text deltas."""

    def new_state(self) -> DecodeState: ...

    def decode_chunk(
        self, raw_bytes: bytes, state: DecodeState
    ) -> tuple[str, UsageStats | None, DecodeState]: ...

    def finish(self, state: DecodeState) -> tuple[str, UsageStats | None, DecodeState]: ...


def strip_sse_prefix(line: str) -> str:
    """Remove an SSE ``data:`` prefix and surrounding whitespace."""
    line = line.strip()
    if line.startswith(SSE_DATA_PREFIX):
        line = line[len(SSE_DATA_PREFIX) :].strip()
    return line


def find_error_message(obj: Any) -> str | None:
    """Return the message of an embedded provider error object, if any."""
    if not isinstance(obj, dict):
        return None
    error = obj.get("error")
    if isinstance(error, dict):
        return str(error.get("message") or error.get("type") or json.dumps(error))
    if isinstance(error, str):
        return error
    return None


class PayloadAdapter(ABC):
    """
    Translator between the internal message model and one wire family.

    Subclasses implement body construction, authorization and the per-event
    text extraction. Line buffering, UTF-8 reassembly, usage merging and
    error bookkeeping are shared here.
    """

    family: str = ""

    def __init__(self, provider: ProviderConfig):
        self.provider = provider

    @property
    def name(self) -> str:
        return self.provider.name

    # Request construction

    def prepare_model(self, model: ConfiguredModel) -> ConfiguredModel:
        """Provider-specific model adjustments applied before building the body."""
        return model

    @abstractmethod
    def build_body(
        self, messages: list[Message], model: ConfiguredModel, flags: SessionFlags
    ) -> dict[str, Any]:
        """Build the JSON request body."""
        ...

    def build_headers(self, body: dict[str, Any], flags: SessionFlags) -> dict[str, str]:
        """Non-secret, provider-specific headers."""
        return {}

    def build_endpoint(self, model_name: str) -> str:
        return self.provider.endpoint_template.replace("{{model}}", model_name)

    def build_request(
        self,
        messages: list[Message],
        model: str | dict[str, Any] | ModelDescriptor,
        flags: SessionFlags | None = None,
    ) -> RequestSpec:
        """
        Build the request for ``messages``.

        The secret is not applied here; see authorize().

        Args:
            messages: Context built for the target exchange
            model: Model descriptor (normalized here)
            flags: Per-document switches; a raw payload replaces the built body
        """
        flags = flags or SessionFlags()
        configured = self.prepare_model(normalize_model(model))

        if flags.raw_payload is not None:
            body = copy.deepcopy(flags.raw_payload)
            model_name = str(body.get("model") or configured.name)
            logger.debug(f"Using raw request body for {self.name}")
        else:
            body = self.build_body(messages, configured, flags)
            model_name = configured.name

        body = self.finalize_body(body)
        return RequestSpec(
            provider=self.name,
            endpoint=self.build_endpoint(model_name),
            headers=self.build_headers(body, flags),
            body=body,
            model=model_name,
        )

    def finalize_body(self, body: dict[str, Any]) -> dict[str, Any]:
        """Last adjustment of the body before it is sent."""
        return body

    @abstractmethod
    def auth_headers(self, bearer: str) -> dict[str, str]:
        """Headers carrying the resolved secret."""
        ...

    def authorize(self, request: RequestSpec, bearer: str) -> RequestSpec:
        """Return a copy of ``request`` with the secret applied."""
        headers = {**request.headers, **self.auth_headers(bearer)}
        endpoint = request.endpoint.replace("{{secret}}", bearer)
        return replace(request, endpoint=endpoint, headers=headers)

    # Stream decoding

    def new_state(self) -> DecodeState:
        return DecodeState(provider=self.name)

    def split_events(self, state: DecodeState, final: bool) -> list[str]:
        """Take complete events out of ``state.buffer``; one event per line by default."""
        if final:
            events, state.buffer = state.buffer.split("\n"), ""
            return events
        if "\n" not in state.buffer:
            return []
        complete, state.buffer = state.buffer.rsplit("\n", 1)
        return complete.split("\n")

    def parse_event(self, event: str) -> Any | None:
        """
        Decode one event into a JSON value; None for events carrying no payload.

        Raises:
            DecodeFailure: If the event is not valid JSON
        """
        payload = strip_sse_prefix(event)
        if not payload or payload == DONE_MARKER or payload.startswith(("event:", ":")):
            return None
        try:
            return json.loads(payload)
        except json.JSONDecodeError as e:
            raise DecodeFailure(self.name, payload, str(e)) from e

    @abstractmethod
    def extract(self, obj: Any, state: DecodeState) -> tuple[str, UsageStats | None]:
        """
        Extract text and usage from one decoded event.

        Raises:
            ProviderErrorEvent: If the event is a provider error object
        """
        ...

    def _process(self, state: DecodeState, final: bool) -> tuple[str, UsageStats | None]:
        deltas: list[str] = []
        usage_update: UsageStats | None = None

        for event in self.split_events(state, final):
            # only needed for diagnosis and recovery while nothing has streamed
            if event.strip() and not state.text and not deltas:
                state.raw_response += event.rstrip("\n") + "\n"
            try:
                obj = self.parse_event(event)
                if obj is None:
                    continue
                text, usage = self.extract(obj, state)
            except DecodeFailure as e:
                logger.debug(f"Skipping malformed {self.name} fragment: {e}")
                continue
            except (AttributeError, KeyError, IndexError, TypeError, ValueError) as e:
                # valid JSON with an unexpected shape
                logger.debug(f"Skipping unexpected {self.name} event {event[:80]!r}: {e}")
                continue
            except ProviderErrorEvent as e:
                logger.error(f"{self.name} returned an error: {e.message}")
                if state.error is None:
                    state.error = e
                continue

            if usage is not None:
                state.usage = (state.usage or UsageStats()).merge(usage)
                usage_update = state.usage
            if text:
                deltas.append(text)

        delta = "".join(deltas)
        state.text += delta
        return delta, usage_update

    def decode_chunk(
        self, raw_bytes: bytes, state: DecodeState
    ) -> tuple[str, UsageStats | None, DecodeState]:
        """
        Feed one stdout chunk and return the text completed by it.

        Bytes of a split UTF-8 sequence or a partial event are held in
        ``state`` until the rest arrives.
        """
        state.buffer += state.decoder.decode(raw_bytes)
        delta, usage = self._process(state, final=False)
        return delta, usage, state

    def finish(self, state: DecodeState) -> tuple[str, UsageStats | None, DecodeState]:
        """Flush buffered input at end of stream."""
        state.buffer += state.decoder.decode(b"", final=True)
        delta, usage = self._process(state, final=True)
        if not state.text and state.error is None:
            fallback = self.recover_unstreamed(state)
            if fallback:
                state.text += fallback
                delta += fallback
        return delta, usage, state

    def recover_unstreamed(self, state: DecodeState) -> str:
        """
        Inspect the whole raw response when streaming yielded nothing.

        Detects a pretty-printed (multi-line) error object. Subclasses extend
        this to recover non-streaming bodies.
        """
        try:
            obj = json.loads(state.raw_response)
        except json.JSONDecodeError:
            return ""
        first = obj[0] if isinstance(obj, list) and obj else obj
        message = find_error_message(first)
        if message:
            state.error = ProviderErrorEvent(
                self.name, message, first if isinstance(first, dict) else None
            )
            logger.error(f"{self.name} returned an error: {message}")
        return ""
