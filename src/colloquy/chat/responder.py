"""
Chat responder.

The end-to-end "answer the question at the cursor" flow over a document
sink: parse, pick the target exchange, build the request, rewrite the
answer area and stream the response into it. ResubmitDriver re-answers a
range of exchanges one completed response at a time.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from colloquy.chat.agents import AgentInfo, resolve_agent_info
from colloquy.chat.document import DocumentSink
from colloquy.chat.writer import StreamWriter
from colloquy.config.app import ColloquyConfig
from colloquy.context.builder import ContextBuilder, MemoryPolicy, apply_system_prompt
from colloquy.context.files import FileResolver
from colloquy.dispatch.dispatcher import StreamDispatcher
from colloquy.dispatch.events import StreamResult, TextDelta
from colloquy.llm import get_adapter
from colloquy.llm.base import PayloadAdapter
from colloquy.llm.messages import MessagesAdapter
from colloquy.llm.models import Message, RequestSpec, SessionFlags
from colloquy.llm.raw import extract_raw_payload
from colloquy.transcript.models import Transcript
from colloquy.transcript.parser import TranscriptParser, find_exchange_at_line, find_header_end

logger = logging.getLogger(__name__)

TOPIC_PLACEHOLDER = "?"
TOPIC_KEY_SUFFIX = "#topic"


@dataclass
class PreparedRequest:
    """Everything needed to dispatch the answer for one exchange."""

    transcript: Transcript
    target_index: int
    agent: AgentInfo
    adapter: PayloadAdapter
    messages: list[Message]
    request: RequestSpec
    flags: SessionFlags = field(default_factory=SessionFlags)


def _is_blank(line: str) -> bool:
    return not line.strip()


class ChatResponder:
    """Answers chat questions inside a document."""

    def __init__(
        self,
        config: ColloquyConfig,
        dispatcher: StreamDispatcher,
        file_resolver: FileResolver | None = None,
    ):
        self.config = config
        self.dispatcher = dispatcher
        self.parser = TranscriptParser(config.chat)
        self.builder = ContextBuilder(MemoryPolicy.from_config(config.memory), file_resolver)

    def parse(self, document: DocumentSink) -> Transcript:
        """
        Parse a document.

        Raises:
            MalformedHeaderError: If the document has no header separator
        """
        lines = document.read_lines(1, document.line_count())
        header_end = find_header_end(lines, self.config.chat.header_separator)
        return self.parser.parse(lines, header_end)

    def target_for(self, transcript: Transcript, cursor_line: int | None) -> int | None:
        """Exchange under the cursor, else the last exchange."""
        if not transcript.exchanges:
            return None
        if cursor_line is not None:
            index, _ = find_exchange_at_line(transcript, cursor_line)
            if index is not None:
                return index
        return len(transcript.exchanges) - 1

    def session_flags(self, transcript: Transcript) -> SessionFlags:
        web_search = transcript.config_override("web_search", self.config.dispatch.web_search)
        return SessionFlags(
            web_search=bool(web_search),
            raw_response=self.config.raw_mode.show_raw_response,
        )

    def prepare(
        self,
        transcript: Transcript,
        target_index: int,
        agent_name: str | None = None,
        system_prompt_name: str | None = None,
    ) -> PreparedRequest:
        """
        Build the messages and request for one exchange without touching the document.

        Raises:
            ValueError: If the agent is unknown
            UnknownProviderError: If the agent's provider is not configured
        """
        agent = resolve_agent_info(
            self.config, transcript.headers, agent_name, system_prompt_name
        )
        settings = self.config.get_provider(agent.provider)
        adapter = get_adapter(settings.to_provider_config(agent.provider))

        messages = self.builder.build(transcript, target_index)
        messages = apply_system_prompt(
            messages, agent.system_prompt, cache_hint=isinstance(adapter, MessagesAdapter)
        )

        flags = self.session_flags(transcript)
        if self.config.raw_mode.parse_raw_request:
            question = transcript.exchanges[target_index].question.content
            flags.raw_payload = extract_raw_payload(question)

        request = adapter.build_request(messages, agent.model, flags)
        return PreparedRequest(
            transcript=transcript,
            target_index=target_index,
            agent=agent,
            adapter=adapter,
            messages=messages,
            request=request,
            flags=flags,
        )

    def assistant_header(self, display_name: str) -> str:
        chat = self.config.chat
        return chat.assistant_prefix + chat.assistant_suffix.replace("{{agent}}", display_name)

    def _open_answer_area(
        self, document: DocumentSink, transcript: Transcript, index: int, header: str
    ) -> int:
        """Remove an existing answer, write the assistant header and return the anchor line."""
        exchange = transcript.exchanges[index]
        if exchange.answer is not None:
            document.replace_span(exchange.answer.start_line, exchange.answer.end_line, [])
            insert_after = exchange.answer.start_line - 1
        else:
            insert_after = min(exchange.question.end_line, document.line_count())
            while insert_after > exchange.question.start_line and _is_blank(
                document.read_lines(insert_after, insert_after)[0]
            ):
                insert_after -= 1

        insert_after = min(insert_after, document.line_count())
        if insert_after >= 1 and not _is_blank(document.read_lines(insert_after, insert_after)[0]):
            document.append_at(insert_after, [""])
            insert_after += 1

        document.append_at(insert_after, [header, "", ""])
        return insert_after + 3

    def _last_content_line(self, document: DocumentSink) -> int:
        line = document.line_count()
        while line > 0 and _is_blank(document.read_lines(line, line)[0]):
            line -= 1
        return line

    def _append_user_prompt(self, document: DocumentSink) -> None:
        last = self._last_content_line(document)
        document.replace_span(last + 1, document.line_count(), [])
        document.append_at(last, ["", "", self.config.chat.user_prefix, ""])

    async def respond(
        self,
        document: DocumentSink,
        cursor_line: int | None = None,
        agent_name: str | None = None,
        *,
        system_prompt_name: str | None = None,
        force: bool | None = None,
        timeout: float | None = None,
    ) -> StreamResult | None:
        """
        Answer the exchange at ``cursor_line`` (the last exchange by default).

        Streamed text stays in the document even when the request fails.

        Returns:
            The StreamResult, or None when nothing was dispatched (busy
            document or no question)

        Raises:
            MalformedHeaderError: If the document has no header separator
        """
        transcript = self.parse(document)
        index = self.target_for(transcript, cursor_line)
        if index is None:
            logger.warning(f"No question found in {document.key}")
            return None

        effective_force = self.dispatcher.busy_mode == "replace" if force is None else force
        if not effective_force and self.dispatcher.is_busy(document.key):
            logger.warning(f"Query already running for {document.key}, ignoring respond")
            return None

        prepared = self.prepare(transcript, index, agent_name, system_prompt_name)
        is_last = index == len(transcript.exchanges) - 1

        snapshot = document.read_lines(1, document.line_count())
        anchor = self._open_answer_area(
            document, transcript, index, self.assistant_header(prepared.agent.display_name)
        )
        writer = StreamWriter(document, anchor)

        loop = asyncio.get_running_loop()
        done: asyncio.Future[StreamResult] = loop.create_future()

        def on_text_delta(delta: TextDelta) -> None:
            writer.write(delta.text)

        def on_done(result: StreamResult) -> None:
            if not done.done():
                done.set_result(result)

        pending = await self.dispatcher.dispatch(
            document.key,
            prepared.adapter,
            prepared.request,
            on_text_delta,
            on_done,
            raw_response=prepared.flags.raw_response,
            force=force,
            timeout=timeout,
        )
        if pending is None:
            document.replace_span(1, document.line_count(), snapshot)
            return None

        result = await done
        if self._never_ran(result):
            # secret, payload or spawn failure: nothing to show in the answer area
            document.replace_span(1, document.line_count(), snapshot)
        else:
            self._finish_answer(document, writer, is_last, result)

        if result.error is not None:
            logger.error(f"Response for {document.key} failed: {result.error}")
        elif transcript.topic == TOPIC_PLACEHOLDER and result.text:
            await self.generate_topic(document, prepared, result.text)

        return result

    @staticmethod
    def _never_ran(result: StreamResult) -> bool:
        return (
            result.error is not None
            and result.returncode is None
            and not result.cancelled
            and not result.text
        )

    def _finish_answer(
        self, document: DocumentSink, writer: StreamWriter, is_last: bool, result: StreamResult
    ) -> None:
        if is_last:
            if result.text:
                self._append_user_prompt(document)
            return
        # keep a blank line between the answer and the next question
        next_line = writer.last_line + 1
        if next_line <= document.line_count():
            if not _is_blank(document.read_lines(next_line, next_line)[0]):
                document.append_at(writer.last_line, [""])

    async def generate_topic(
        self, document: DocumentSink, prepared: PreparedRequest, answer: str
    ) -> str | None:
        """Ask the model for a short topic and write it as the first line."""
        messages = [
            *prepared.messages,
            Message(role="assistant", content=answer.strip()),
            Message(role="user", content=self.config.chat.topic_gen_prompt),
        ]
        flags = SessionFlags(web_search=False)
        request = prepared.adapter.build_request(messages, prepared.agent.model, flags)

        stream = await self.dispatcher.open(
            document.key + TOPIC_KEY_SUFFIX, prepared.adapter, request, force=True
        )
        if stream is None:
            return None
        result = await stream.result()
        if result.error is not None or not result.text.strip():
            logger.warning(f"Topic generation failed for {document.key}: {result.error}")
            return None

        topic = result.text.strip().split("\n")[0].strip().removesuffix(".")
        if not topic:
            return None
        document.replace_span(1, 1, [f"# topic: {topic}"])
        logger.info(f"Generated topic for {document.key}: {topic}")
        return topic


class ResubmitDriver:
    """
    Re-answers exchanges in order, one completed response at a time.

    The document is re-parsed before every step, since each answer changes
    the line spans of everything after it.
    """

    def __init__(self, responder: ChatResponder):
        self.responder = responder
        self.queue: list[int] = []
        self.cursor = 0
        self.results: list[StreamResult] = []

    def plan(self, transcript: Transcript, cursor_line: int | None = None) -> list[int]:
        """Indices to resubmit: every exchange up to the one at the cursor."""
        if not transcript.exchanges:
            return []
        last = len(transcript.exchanges) - 1
        if cursor_line is not None:
            index, _ = find_exchange_at_line(transcript, cursor_line)
            if index is None:
                before = [
                    i
                    for i, ex in enumerate(transcript.exchanges)
                    if ex.question.start_line < cursor_line
                ]
                index = before[-1] if before else None
            if index is None:
                return []
            last = index
        return list(range(last + 1))

    async def run(
        self,
        document: DocumentSink,
        cursor_line: int | None = None,
        agent_name: str | None = None,
        *,
        timeout: float | None = None,
    ) -> list[StreamResult]:
        """
        Resubmit every question up to the cursor.

        Stops early when a response fails or the document is busy.
        """
        self.queue = self.plan(self.responder.parse(document), cursor_line)
        self.cursor = 0
        self.results = []
        if not self.queue:
            logger.warning("No questions found before cursor position")
            return self.results

        logger.info(f"Resubmitting {len(self.queue)} questions in {document.key}")
        while self.cursor < len(self.queue):
            index = self.queue[self.cursor]
            transcript = self.responder.parse(document)
            if index >= len(transcript.exchanges):
                logger.warning(f"Exchange {index} disappeared during resubmission")
                break

            line = transcript.exchanges[index].question.start_line
            result = await self.responder.respond(
                document, cursor_line=line, agent_name=agent_name, timeout=timeout
            )
            if result is None:
                break
            self.results.append(result)
            self.cursor += 1
            if not result.ok:
                break

        logger.info(f"Resubmitted {len(self.results)} of {len(self.queue)} questions")
        return self.results
