"""
Process supervision for transport subprocesses.

Spawns one child per query in its own process group, streams stdout and
stderr to callbacks in read order, and delivers exactly one terminal
ProcessExit per spawned query (exited, cancelled, timed out or failed to
start). A document can have at most one live query.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import os
import signal
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import psutil

from colloquy.errors import BusyConflictError, TransportSpawnError
from colloquy.process.registry import ProcessHandle, ProcessRegistry

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
ESCALATION_POLL_INTERVAL = 0.1


@dataclass
class ProcessExit:
    """Terminal outcome of one supervised process."""

    query_id: str
    """Query the process served."""

    document_key: str
    """Document the query belonged to."""

    returncode: int | None = None
    """Exit status; negative for death by signal, None if never started."""

    cancelled: bool = False
    """Whether cancel() was requested before the process ended."""

    timed_out: bool = False
    """Whether the cancellation came from the timeout."""

    error: Exception | None = None
    """Spawn failure, if the process never started."""


ChunkCallback = Callable[[bytes], Any]
ExitCallback = Callable[[ProcessExit], Any]


async def _invoke(callback: Callable[..., Any] | None, *args: Any) -> None:
    """Call a sync or async callback."""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ProcessSupervisor:
    """
    Generic subprocess lifecycle manager.

    Example:
        >>> supervisor = ProcessSupervisor()
        >>> query_id = await supervisor.run("notes.md", ["curl", ...], on_exit, on_chunk)
        >>> supervisor.cancel("notes.md")
    """

    def __init__(self, registry: ProcessRegistry | None = None, cancel_grace: float = 2.0):
        """
        Initialize ProcessSupervisor.

        Args:
            registry: Registry of live handles (a private one when omitted)
            cancel_grace: Seconds between SIGTERM and SIGKILL escalation
        """
        self.registry = registry or ProcessRegistry()
        self.cancel_grace = cancel_grace

    def is_busy(self, document_key: str) -> bool:
        return self.registry.is_busy(document_key)

    async def run(
        self,
        document_key: str,
        argv: list[str],
        on_exit: ExitCallback,
        on_stdout_chunk: ChunkCallback | None = None,
        on_stderr_chunk: ChunkCallback | None = None,
        *,
        force: bool = False,
        timeout: float | None = None,
        query_id: str | None = None,
    ) -> str:
        """
        Start ``argv`` for ``document_key``.

        Args:
            document_key: Document the process writes into
            argv: Command line; argv[0] is resolved on PATH
            on_exit: Called exactly once with the terminal ProcessExit
            on_stdout_chunk: Called with each stdout read, in order
            on_stderr_chunk: Called with each stderr read, in order
            force: Cancel a live query on the same document instead of failing
            timeout: Seconds before the process is cancelled (None waits forever)
            query_id: Id to use instead of a generated one

        Returns:
            The query id

        Raises:
            BusyConflictError: If the document is busy and force is False.
                Nothing is spawned and on_exit never fires.
        """
        existing = self.registry.get_by_document(document_key)
        if existing is not None:
            if not force:
                raise BusyConflictError(document_key, existing.query_id)
            logger.info(f"Replacing query {existing.query_id} on {document_key}")
            self.cancel(existing.query_id)
            if existing.task is not None:
                await asyncio.shield(existing.task)

        handle = ProcessHandle(
            query_id=query_id or uuid.uuid4().hex,
            document_key=document_key,
            argv=list(argv),
        )
        self.registry.reserve(handle)
        handle.task = asyncio.create_task(
            self._drive(handle, on_exit, on_stdout_chunk, on_stderr_chunk, timeout),
            name=f"colloquy-query-{handle.query_id}",
        )
        return handle.query_id

    async def wait(self, query_id: str) -> None:
        """Wait until a query's terminal callback has been delivered."""
        handle = self.registry.get(query_id)
        if handle is not None and handle.task is not None:
            await asyncio.shield(handle.task)

    async def _pump(
        self,
        stream: asyncio.StreamReader | None,
        callback: ChunkCallback | None,
        query_id: str,
    ) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            try:
                await _invoke(callback, chunk)
            except Exception as e:
                logger.error(f"Chunk callback failed for query {query_id}: {e}", exc_info=True)

    async def _drive(
        self,
        handle: ProcessHandle,
        on_exit: ExitCallback,
        on_stdout: ChunkCallback | None,
        on_stderr: ChunkCallback | None,
        timeout: float | None,
    ) -> None:
        outcome = ProcessExit(query_id=handle.query_id, document_key=handle.document_key)
        timer: asyncio.TimerHandle | None = None
        try:
            try:
                process = await asyncio.create_subprocess_exec(
                    *handle.argv,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    start_new_session=True,
                )
            except OSError as e:
                argv0 = handle.argv[0] if handle.argv else ""
                logger.error(f"Failed to start {argv0} for query {handle.query_id}: {e}")
                handle.state = "exited"
                outcome.error = TransportSpawnError(argv0, str(e))
                await self._deliver(on_exit, outcome)
                return

            handle.process = process
            handle.pid = process.pid
            handle.state = "streaming"
            logger.debug(f"Query {handle.query_id} started (pid={process.pid})")

            if handle.cancelled:
                # cancel() arrived while the process was starting
                self._signal(handle, signal.SIGTERM)
            if timeout is not None:
                timer = asyncio.get_running_loop().call_later(timeout, self._on_timeout, handle)

            await asyncio.gather(
                self._pump(process.stdout, on_stdout, handle.query_id),
                self._pump(process.stderr, on_stderr, handle.query_id),
            )
            outcome.returncode = await process.wait()
            if timer is not None:
                timer.cancel()

            handle.state = "cancelled" if handle.cancelled else "exited"
            outcome.cancelled = handle.cancelled
            outcome.timed_out = handle.timed_out
            logger.debug(
                f"Query {handle.query_id} {handle.state} (returncode={outcome.returncode})"
            )
            await self._deliver(on_exit, outcome)
        finally:
            if timer is not None:
                timer.cancel()
            await self._stop_escalation(handle)
            self.registry.remove(handle.query_id)

    async def _stop_escalation(self, handle: ProcessHandle) -> None:
        """Cancel a pending SIGKILL escalation once the process is gone."""
        task = handle.escalation
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.error(f"Escalation failed for query {handle.query_id}: {e}", exc_info=True)

    async def _deliver(self, on_exit: ExitCallback, outcome: ProcessExit) -> None:
        try:
            await _invoke(on_exit, outcome)
        except Exception as e:
            logger.error(f"Exit callback failed for query {outcome.query_id}: {e}", exc_info=True)

    def _on_timeout(self, handle: ProcessHandle) -> None:
        if handle.is_terminal or handle.cancelled:
            return
        logger.warning(f"Query {handle.query_id} timed out, cancelling")
        handle.timed_out = True
        self.cancel(handle.query_id)

    def _signal(self, handle: ProcessHandle, sig: int) -> None:
        if handle.pid is None:
            return
        try:
            # start_new_session makes the child its own group leader
            os.killpg(handle.pid, sig)
        except ProcessLookupError:
            logger.debug(f"Process group {handle.pid} already gone")
        except PermissionError:
            logger.warning(f"No permission to signal process group {handle.pid}")
            if handle.process is not None and handle.process.returncode is None:
                handle.process.send_signal(sig)

    def cancel(self, target: str, sig: int = signal.SIGTERM) -> bool:
        """
        Cancel a query by query id or document key.

        Signals the child's process group; when the child outlives
        ``cancel_grace`` it is killed. The terminal callback still fires,
        marked cancelled.

        Returns:
            True if a live query was found
        """
        handle = self.registry.lookup(target)
        if handle is None or handle.is_terminal:
            return False

        handle.cancelled = True
        logger.info(f"Cancelling query {handle.query_id} on {handle.document_key}")
        if handle.process is None or handle.process.returncode is not None:
            return True

        self._signal(handle, sig)
        if sig != signal.SIGKILL and self.cancel_grace > 0 and handle.escalation is None:
            handle.escalation = asyncio.get_running_loop().create_task(
                self._escalate(handle), name=f"colloquy-escalate-{handle.query_id}"
            )
        return True

    async def _escalate(self, handle: ProcessHandle) -> None:
        """Kill the process group if the child survives the grace period."""
        if handle.pid is None:
            return
        try:
            proc = psutil.Process(handle.pid)
        except psutil.NoSuchProcess:
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.cancel_grace
        while loop.time() < deadline:
            if handle.process is not None and handle.process.returncode is not None:
                return
            try:
                if proc.status() == psutil.STATUS_ZOMBIE:
                    return
            except psutil.NoSuchProcess:
                return
            await asyncio.sleep(ESCALATION_POLL_INTERVAL)

        if handle.process is not None and handle.process.returncode is None:
            self._signal(handle, signal.SIGKILL)
            logger.info(f"Escalated to SIGKILL for query {handle.query_id} (pid={handle.pid})")

    def cancel_all(self) -> int:
        """Cancel every live query; returns how many were signalled."""
        return sum(1 for handle in self.registry.get_all() if self.cancel(handle.query_id))

    async def shutdown(self) -> None:
        """Cancel all queries and wait for their terminal callbacks."""
        handles = self.registry.get_all()
        self.cancel_all()
        tasks: list[Awaitable[Any]] = [h.task for h in handles if h.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
