"""Tests for StreamDispatcher with a scripted transport."""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pytest

from colloquy.config.app import ColloquyConfig
from colloquy.dispatch.dispatcher import StreamDispatcher, build_curl_argv
from colloquy.dispatch.events import StreamResult, TextDelta
from colloquy.dispatch.secrets import ConfigSecretResolver
from colloquy.dispatch.store import QueryStore
from colloquy.errors import (
    DecodeFailure,
    EmptyStreamError,
    ProviderErrorEvent,
    SecretResolutionError,
    TransportSpawnError,
)
from colloquy.llm.chat_completions import ChatCompletionsAdapter
from colloquy.llm.models import Message, ProviderConfig, RequestSpec
from colloquy.process.supervisor import ProcessSupervisor

pytestmark = pytest.mark.integration


def _sse(text: str) -> str:
    return "data: " + json.dumps({"choices": [{"delta": {"content": text}}]}) + "\n\n"


def _emitter(*chunks: str, delay: float = 0.1, exit_code: int = 0) -> str:
    """Python source writing ``chunks`` to stdout with pauses in between."""
    return (
        "import sys, time\n"
        f"for chunk in {list(chunks)!r}:\n"
        "    sys.stdout.write(chunk)\n"
        "    sys.stdout.flush()\n"
        f"    time.sleep({delay})\n"
        f"sys.exit({exit_code})\n"
    )


class Recorder:
    """Collects dispatcher callbacks."""

    def __init__(self) -> None:
        self.deltas: list[str] = []
        self.results: list[StreamResult] = []
        self.done = asyncio.Event()

    def on_text_delta(self, delta: TextDelta) -> None:
        self.deltas.append(delta.text)

    def on_done(self, result: StreamResult) -> None:
        self.results.append(result)
        self.done.set()

    async def result(self) -> StreamResult:
        await asyncio.wait_for(self.done.wait(), 10)
        return self.results[-1]


@pytest.fixture
def adapter() -> ChatCompletionsAdapter:
    return ChatCompletionsAdapter(
        ProviderConfig(name="openai", endpoint_template="https://api.test/v1", secret_handle="openai")
    )


@pytest.fixture
def request_spec(adapter: ChatCompletionsAdapter) -> RequestSpec:
    return adapter.build_request([Message(role="user", content="hi")], "gpt-4o")


def _dispatcher(temp_dir: Path, code: str, seen: list | None = None, **kwargs) -> StreamDispatcher:
    def argv_builder(request: RequestSpec, payload_path: Path) -> list[str]:
        if seen is not None:
            seen.append((request, payload_path, payload_path.read_text()))
        return [sys.executable, "-c", code]

    return StreamDispatcher(
        ProcessSupervisor(cancel_grace=0.5),
        ConfigSecretResolver({"openai": "sk-test"}),
        QueryStore(temp_dir / "query"),
        argv_builder=argv_builder,
        **kwargs,
    )


class TestBuildCurlArgv:
    """Tests for build_curl_argv."""

    def test_argv(self, adapter: ChatCompletionsAdapter, request_spec: RequestSpec) -> None:
        """The body is passed by file and every header is added."""
        authorized = adapter.authorize(request_spec, "sk")
        argv = build_curl_argv(authorized, Path("/tmp/p.json"), "curl", ["--proxy", "http://p"])

        assert argv[:3] == ["curl", "--proxy", "http://p"]
        assert "--no-buffer" in argv
        assert "@/tmp/p.json" in argv
        assert "https://api.test/v1" in argv
        assert "Authorization: Bearer sk" in argv


class TestDispatch:
    """Tests for a full dispatch."""

    async def test_chunked_stream(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """Deltas arrive in order and the result carries the full text."""
        seen: list = []
        dispatcher = _dispatcher(
            temp_dir, _emitter(_sse("Hel"), _sse("lo\n"), "data: [DONE]\n\n"), seen
        )
        recorder = Recorder()

        pending = await dispatcher.dispatch(
            "doc", adapter, request_spec, recorder.on_text_delta, recorder.on_done
        )
        result = await recorder.result()

        assert pending is not None
        assert recorder.deltas == ["Hel", "lo\n"]
        assert result.text == "Hello\n"
        assert result.ok
        assert result.returncode == 0
        assert len(recorder.results) == 1

        request, payload_path, payload = seen[0]
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert json.loads(payload)["model"] == "gpt-4o"
        assert not payload_path.exists()
        assert dispatcher.get_pending(pending.id) is None

    async def test_empty_stream(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """A stream without text finishes with EmptyStreamError."""
        code = "import sys; sys.stderr.write('connection refused'); sys.exit(7)"
        dispatcher = _dispatcher(temp_dir, code)
        recorder = Recorder()

        await dispatcher.dispatch("doc", adapter, request_spec, recorder.on_text_delta, recorder.on_done)
        result = await recorder.result()

        assert isinstance(result.error, EmptyStreamError)
        assert "connection refused" in str(result.error)
        assert result.returncode == 7
        assert recorder.deltas == []

    async def test_provider_error(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """Provider error objects become the result's error."""
        error_line = "data: " + json.dumps({"error": {"message": "bad key"}}) + "\n\n"
        dispatcher = _dispatcher(temp_dir, _emitter(error_line))
        recorder = Recorder()

        await dispatcher.dispatch("doc", adapter, request_spec, None, recorder.on_done)
        result = await recorder.result()

        assert isinstance(result.error, ProviderErrorEvent)
        assert result.error.message == "bad key"

    async def test_secret_failure(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """An unresolvable secret completes immediately without spawning."""
        seen: list = []
        dispatcher = _dispatcher(temp_dir, "print('never')", seen)
        dispatcher.secret_resolver = ConfigSecretResolver({})
        recorder = Recorder()

        pending = await dispatcher.dispatch("doc", adapter, request_spec, None, recorder.on_done)
        result = await recorder.result()

        assert pending is not None and pending.done
        assert isinstance(result.error, SecretResolutionError)
        assert seen == []

    async def test_spawn_failure(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """A missing transport is reported in the result."""
        dispatcher = StreamDispatcher(
            ProcessSupervisor(),
            ConfigSecretResolver({"openai": "sk"}),
            QueryStore(temp_dir / "query"),
            curl_path="/nonexistent/curl",
        )
        recorder = Recorder()

        await dispatcher.dispatch("doc", adapter, request_spec, None, recorder.on_done)
        result = await recorder.result()

        assert isinstance(result.error, TransportSpawnError)
        assert list((temp_dir / "query").glob("*.json")) == []

    async def test_async_callbacks(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """Coroutine callbacks are awaited in order."""
        dispatcher = _dispatcher(temp_dir, _emitter(_sse("a"), _sse("b")))
        deltas: list[str] = []
        done = asyncio.Event()

        async def on_text_delta(delta: TextDelta) -> None:
            await asyncio.sleep(0)
            deltas.append(delta.text)

        async def on_done(result: StreamResult) -> None:
            done.set()

        await dispatcher.dispatch("doc", adapter, request_spec, on_text_delta, on_done)
        await asyncio.wait_for(done.wait(), 10)
        assert deltas == ["a", "b"]


    async def test_unexpected_final_event(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """A wrongly shaped last event without newline still ends in one result."""
        dispatcher = _dispatcher(temp_dir, _emitter(_sse("Hi"), '{"choices":[{"delta":"x"}]}'))
        recorder = Recorder()

        await dispatcher.dispatch("doc", adapter, request_spec, recorder.on_text_delta, recorder.on_done)
        result = await recorder.result()
        await asyncio.sleep(0.1)

        assert len(recorder.results) == 1
        assert result.text == "Hi"
        assert result.ok
        assert dispatcher.is_busy("doc") is False

    async def test_finish_failure_still_reports(
        self,
        temp_dir: Path,
        adapter: ChatCompletionsAdapter,
        request_spec: RequestSpec,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A decoder failing at end of stream yields a DecodeFailure result."""

        def finish(state):
            raise RuntimeError("decoder exploded")

        monkeypatch.setattr(adapter, "finish", finish)
        dispatcher = _dispatcher(temp_dir, _emitter(_sse("Hi")))
        recorder = Recorder()

        await dispatcher.dispatch("doc", adapter, request_spec, recorder.on_text_delta, recorder.on_done)
        result = await recorder.result()

        assert len(recorder.results) == 1
        assert result.text == "Hi"
        assert isinstance(result.error, DecodeFailure)
        assert "decoder exploded" in str(result.error)
        assert list((temp_dir / "query").glob("*.json")) == []

    async def test_payload_write_failure(
        self,
        temp_dir: Path,
        adapter: ChatCompletionsAdapter,
        request_spec: RequestSpec,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A payload that cannot be written completes the query without spawning."""
        seen: list = []
        dispatcher = _dispatcher(temp_dir, "print('never')", seen)

        async def write(payload):
            raise PermissionError("read-only directory")

        monkeypatch.setattr(dispatcher.store, "write", write)
        recorder = Recorder()

        pending = await dispatcher.dispatch("doc", adapter, request_spec, None, recorder.on_done)
        result = await recorder.result()

        assert pending is not None and pending.done
        assert isinstance(result.error, TransportSpawnError)
        assert "read-only directory" in str(result.error)
        assert result.returncode is None
        assert len(recorder.results) == 1
        assert seen == []
        assert dispatcher.is_busy("doc") is False

class TestBusyAndCancel:
    """Tests for busy documents, cancellation and timeouts."""

    async def test_busy_document_ignored(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """A second dispatch on a busy document returns None."""
        dispatcher = _dispatcher(temp_dir, _emitter(_sse("slow"), delay=2))
        first = Recorder()

        assert await dispatcher.dispatch("doc", adapter, request_spec, None, first.on_done)
        assert dispatcher.is_busy("doc")
        assert await dispatcher.dispatch("doc", adapter, request_spec) is None

        dispatcher.cancel("doc")
        result = await first.result()
        assert result.cancelled is True

    async def test_replace_mode(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """In replace mode a new dispatch cancels the running one."""
        dispatcher = _dispatcher(temp_dir, _emitter(_sse("x"), delay=2), busy_mode="replace")
        first = Recorder()
        second = Recorder()

        await dispatcher.dispatch("doc", adapter, request_spec, None, first.on_done)
        await dispatcher.dispatch("doc", adapter, request_spec, None, second.on_done)

        assert (await first.result()).cancelled is True
        assert (await second.result()).text == "x"

    async def test_cancel_keeps_partial_text(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """A cancelled stream keeps the text received so far and is not an empty stream."""
        dispatcher = _dispatcher(temp_dir, _emitter(_sse("partial"), _sse("never"), delay=5))
        recorder = Recorder()

        await dispatcher.dispatch("doc", adapter, request_spec, recorder.on_text_delta, recorder.on_done)
        for _ in range(100):
            if recorder.deltas:
                break
            await asyncio.sleep(0.05)
        dispatcher.cancel("doc")
        result = await recorder.result()

        assert result.cancelled is True
        assert result.text == "partial"
        assert result.error is None

    async def test_timeout(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """Timeouts cancel the query and mark it timed out."""
        dispatcher = _dispatcher(temp_dir, _emitter(_sse("x"), delay=5), timeout=0.3)
        recorder = Recorder()

        await dispatcher.dispatch("doc", adapter, request_spec, None, recorder.on_done)
        result = await recorder.result()

        assert result.cancelled is True
        assert result.timed_out is True


class TestQueryStream:
    """Tests for the async iterator interface."""

    async def test_iterates_events(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """open() yields deltas then the result."""
        dispatcher = _dispatcher(temp_dir, _emitter(_sse("one "), _sse("two")))
        stream = await dispatcher.open("doc", adapter, request_spec)
        assert stream is not None

        events = [event async for event in stream]

        assert [e.text for e in events if isinstance(e, TextDelta)] == ["one ", "two"]
        assert isinstance(events[-1], StreamResult)
        assert events[-1].text == "one two"

    async def test_result(
        self, temp_dir: Path, adapter: ChatCompletionsAdapter, request_spec: RequestSpec
    ) -> None:
        """result() drains the stream."""
        dispatcher = _dispatcher(temp_dir, _emitter(_sse("done")))
        stream = await dispatcher.open("doc", adapter, request_spec)
        assert stream is not None
        assert (await stream.result()).text == "done"


class TestFromConfig:
    """Tests for StreamDispatcher.from_config."""

    async def test_from_config(self, default_config: ColloquyConfig) -> None:
        """Dispatch settings are taken from the config."""
        default_config.dispatch.curl_params = ["--http1.1"]
        default_config.dispatch.busy_mode = "replace"
        dispatcher = StreamDispatcher.from_config(default_config)
        assert dispatcher.curl_params == ["--http1.1"]
        assert dispatcher.busy_mode == "replace"
        assert dispatcher.timeout == 600.0
