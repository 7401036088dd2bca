"""
Stream dispatching.

Runs one request end to end: resolves the provider secret, writes the
payload for the transport, starts the transport under the process
supervisor, decodes stdout through the provider's adapter and reports the
ordered text deltas followed by a single StreamResult.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any, Literal

from colloquy.config.app import ColloquyConfig
from colloquy.dispatch.events import PendingQuery, StreamEvent, StreamResult, TextDelta
from colloquy.dispatch.secrets import ConfigSecretResolver, SecretResolver
from colloquy.dispatch.store import QueryStore
from colloquy.errors import (
    BusyConflictError,
    DecodeFailure,
    EmptyStreamError,
    SecretResolutionError,
    TransportSpawnError,
)
from colloquy.llm.base import PayloadAdapter, StreamDecoder
from colloquy.llm.models import RequestSpec
from colloquy.llm.raw import RawResponseDecoder
from colloquy.process.supervisor import ProcessExit, ProcessSupervisor

logger = logging.getLogger(__name__)

STDERR_DETAIL_LIMIT = 500

ArgvBuilder = Callable[[RequestSpec, Path], list[str]]
TextDeltaCallback = Callable[[TextDelta], Any]
DoneCallback = Callable[[StreamResult], Any]


def build_curl_argv(
    request: RequestSpec,
    payload_path: Path,
    curl_path: str = "curl",
    curl_params: list[str] | None = None,
) -> list[str]:
    """
    Build the transport command line for an authorized request.

    The body is referenced as ``@file``; output is unbuffered and silent, so
    transport errors surface as payload content.
    """
    argv = [curl_path, *(curl_params or [])]
    argv += [
        "--no-buffer",
        "-s",
        request.endpoint,
        "-H",
        "Content-Type: application/json",
        "-d",
        f"@{payload_path}",
    ]
    for name, value in request.headers.items():
        argv += ["-H", f"{name}: {value}"]
    return argv


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class QueryStream:
    """
    Async iterator over the events of one dispatched query.

    Yields TextDelta events in read order and ends after the StreamResult.

    Example:
        >>> stream = await dispatcher.open("notes.md", adapter, request)
        >>> async for event in stream:
        ...     if isinstance(event, TextDelta):
        ...         print(event.text, end="")
    """

    def __init__(
        self,
        pending: PendingQuery,
        queue: asyncio.Queue[StreamEvent],
        dispatcher: StreamDispatcher,
    ):
        self.pending = pending
        self._queue = queue
        self._dispatcher = dispatcher
        self._finished = False

    @property
    def query_id(self) -> str:
        return self.pending.id

    def __aiter__(self) -> QueryStream:
        return self

    async def __anext__(self) -> StreamEvent:
        if self._finished:
            raise StopAsyncIteration
        event = await self._queue.get()
        if isinstance(event, StreamResult):
            self._finished = True
        return event

    async def result(self) -> StreamResult:
        """Drain the stream and return its StreamResult."""
        async for event in self:
            if isinstance(event, StreamResult):
                return event
        assert self.pending.result is not None
        return self.pending.result

    def cancel(self) -> bool:
        return self._dispatcher.cancel(self.query_id)


class StreamDispatcher:
    """Orchestrates streamed provider requests over a subprocess transport."""

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        secret_resolver: SecretResolver,
        store: QueryStore,
        *,
        curl_path: str = "curl",
        curl_params: list[str] | None = None,
        timeout: float | None = 600.0,
        busy_mode: Literal["reject", "replace"] = "reject",
        argv_builder: ArgvBuilder | None = None,
    ):
        """
        Initialize StreamDispatcher.

        Args:
            supervisor: Process supervisor running the transport
            secret_resolver: Resolves provider secrets
            store: Payload file store
            curl_path: Transport executable
            curl_params: Extra transport arguments
            timeout: Default seconds before a query is cancelled (None disables)
            busy_mode: "reject" ignores dispatches on busy documents,
                "replace" cancels the running query first
            argv_builder: Builds the transport command line (curl by default)
        """
        self.supervisor = supervisor
        self.secret_resolver = secret_resolver
        self.store = store
        self.curl_path = curl_path
        self.curl_params = list(curl_params or [])
        self.timeout = timeout
        self.busy_mode = busy_mode
        self.argv_builder = argv_builder or self._curl_argv
        self._pending: dict[str, PendingQuery] = {}

    @classmethod
    def from_config(
        cls,
        config: ColloquyConfig,
        supervisor: ProcessSupervisor | None = None,
        secret_resolver: SecretResolver | None = None,
    ) -> StreamDispatcher:
        dispatch = config.dispatch
        store = QueryStore(dispatch.query_dir, dispatch.max_query_files, dispatch.keep_query_files)
        return cls(
            supervisor or ProcessSupervisor(cancel_grace=dispatch.cancel_grace),
            secret_resolver or ConfigSecretResolver.from_config(config),
            store,
            curl_path=dispatch.curl_path,
            curl_params=dispatch.curl_params,
            timeout=dispatch.timeout,
            busy_mode=dispatch.busy_mode,
        )

    def _curl_argv(self, request: RequestSpec, payload_path: Path) -> list[str]:
        return build_curl_argv(request, payload_path, self.curl_path, self.curl_params)

    def is_busy(self, document_key: str) -> bool:
        return self.supervisor.is_busy(document_key)

    def get_pending(self, query_id: str) -> PendingQuery | None:
        return self._pending.get(query_id)

    def cancel(self, target: str) -> bool:
        """Cancel a query by query id or document key."""
        handle = self.supervisor.registry.lookup(target)
        if handle is not None and handle.query_id in self._pending:
            self._pending[handle.query_id].cancelled = True
        return self.supervisor.cancel(target)

    async def _fail(
        self, pending: PendingQuery, error: Exception, on_done: DoneCallback | None
    ) -> PendingQuery:
        """Finish a query that never reached the transport."""
        pending.error = error
        pending.result = StreamResult(query_id=pending.id, error=error)
        await _invoke(on_done, pending.result)
        return pending

    async def dispatch(
        self,
        document_key: str,
        adapter: PayloadAdapter,
        request: RequestSpec,
        on_text_delta: TextDeltaCallback | None = None,
        on_done: DoneCallback | None = None,
        *,
        raw_response: bool = False,
        force: bool | None = None,
        timeout: float | None = None,
    ) -> PendingQuery | None:
        """
        Start a request for ``document_key``.

        ``on_text_delta`` receives each non-empty decoded delta in order;
        ``on_done`` fires exactly once with the StreamResult, including for
        cancellation, spawn failures and empty streams.

        Args:
            document_key: Document the response is written into
            adapter: Payload adapter of the request's provider
            request: Unauthorized request from adapter.build_request()
            on_text_delta: Text delta callback (sync or async)
            on_done: Completion callback (sync or async)
            raw_response: Show the undecoded stream fenced as json
            force: Replace a running query on the document
                (defaults to busy_mode == "replace")
            timeout: Seconds before cancellation (defaults to the dispatcher timeout)

        Returns:
            The PendingQuery, or None when the document is busy and not forced
        """
        force = self.busy_mode == "replace" if force is None else force
        if not force and self.supervisor.is_busy(document_key):
            logger.warning(f"Query already running for {document_key}, ignoring dispatch")
            return None

        provider = adapter.name
        pending = PendingQuery(id=uuid.uuid4().hex, document_key=document_key, provider=provider)
        logger.debug(f"Dispatching {provider} query {pending.id}: {json.dumps(request.redacted())}")

        try:
            bearer = await self.secret_resolver.resolve(provider)
        except SecretResolutionError as e:
            logger.error(f"Cannot dispatch {provider} query: {e}")
            return await self._fail(pending, e, on_done)

        authorized = adapter.authorize(request, bearer)
        try:
            payload_path = await self.store.write(authorized.body)
        except OSError as e:
            logger.error(f"Cannot write {provider} request payload: {e}")
            error = TransportSpawnError(self.curl_path, f"cannot write request payload: {e}")
            return await self._fail(pending, error, on_done)
        argv = self.argv_builder(authorized, payload_path)

        decoder: StreamDecoder = RawResponseDecoder(provider) if raw_response else adapter
        state = decoder.new_state()
        stderr_parts: list[bytes] = []

        async def emit(text: str) -> None:
            if not text:
                return
            pending.accumulated_text += text
            await _invoke(on_text_delta, TextDelta(query_id=pending.id, text=text))

        async def on_stdout(chunk: bytes) -> None:
            text, usage, _ = decoder.decode_chunk(chunk, state)
            if usage is not None:
                pending.usage = usage
            await emit(text)

        def on_stderr(chunk: bytes) -> None:
            stderr_parts.append(chunk)

        async def on_exit(outcome: ProcessExit) -> None:
            try:
                text, usage, _ = decoder.finish(state)
                if usage is not None:
                    pending.usage = usage
                await emit(text)
            except Exception as e:
                # the terminal result must still be delivered
                logger.error(f"Failed to finish {provider} stream {pending.id}: {e}", exc_info=True)
                if state.error is None:
                    state.error = DecodeFailure(provider, state.buffer, str(e))
            finally:
                await self.store.delete(payload_path)

            pending.cancelled = pending.cancelled or outcome.cancelled
            pending.timed_out = outcome.timed_out
            error = outcome.error or state.error
            if error is None and not pending.accumulated_text and not pending.cancelled:
                stderr = b"".join(stderr_parts).decode("utf-8", errors="replace").strip()
                detail = stderr[:STDERR_DETAIL_LIMIT] or f"exit code {outcome.returncode}"
                error = EmptyStreamError(provider, detail)
                logger.error(f"{provider} response is empty: {state.raw_response[:STDERR_DETAIL_LIMIT]!r}")
            pending.error = error

            pending.result = StreamResult(
                query_id=pending.id,
                text=pending.accumulated_text,
                usage=pending.usage,
                error=error,
                cancelled=pending.cancelled,
                timed_out=pending.timed_out,
                returncode=outcome.returncode,
            )
            try:
                await _invoke(on_done, pending.result)
            finally:
                self._pending.pop(pending.id, None)

        self._pending[pending.id] = pending
        try:
            await self.supervisor.run(
                document_key,
                argv,
                on_exit,
                on_stdout,
                on_stderr,
                force=force,
                timeout=timeout if timeout is not None else self.timeout,
                query_id=pending.id,
            )
        except BusyConflictError as e:
            logger.warning(f"{e}; ignoring dispatch")
            self._pending.pop(pending.id, None)
            await self.store.delete(payload_path)
            return None
        if not pending.done:
            pending.process_handle = self.supervisor.registry.get(pending.id)
        return pending

    async def open(
        self,
        document_key: str,
        adapter: PayloadAdapter,
        request: RequestSpec,
        *,
        raw_response: bool = False,
        force: bool | None = None,
        timeout: float | None = None,
    ) -> QueryStream | None:
        """
        Start a request and return its events as an async iterator.

        Returns:
            QueryStream, or None when the document is busy and not forced
        """
        queue: asyncio.Queue[StreamEvent] = asyncio.Queue()
        pending = await self.dispatch(
            document_key,
            adapter,
            request,
            on_text_delta=queue.put_nowait,
            on_done=queue.put_nowait,
            raw_response=raw_response,
            force=force,
            timeout=timeout,
        )
        if pending is None:
            return None
        return QueryStream(pending, queue, self)
