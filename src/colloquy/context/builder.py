"""
Context building.

Turns a parsed transcript and a target exchange into the ordered message
list sent to a provider. Older exchanges outside the memory window are
replaced by a placeholder question and their one-line summary.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from colloquy.config.app import MemoryConfig
from colloquy.context.files import FileResolver, LocalFileResolver
from colloquy.llm.models import Message
from colloquy.transcript.models import Exchange, Transcript

logger = logging.getLogger(__name__)


@dataclass
class MemoryPolicy:
    """Which exchanges are sent in full and what replaces the others."""

    enable: bool = True
    max_full_exchanges: int = 5
    omit_user_text: str = "Summarize our chat"
    summary_fallback: str = "full"

    @classmethod
    def from_config(cls, config: MemoryConfig) -> MemoryPolicy:
        return cls(
            enable=config.enable,
            max_full_exchanges=config.max_full_exchanges,
            omit_user_text=config.omit_user_text,
            summary_fallback=config.summary_fallback,
        )

    def effective_max_full(self, transcript: Transcript) -> int | None:
        """
        Resolve the memory window for a transcript.

        A ``- max_full_exchanges: N`` header wins over the policy default.
        Returns None (unbounded) when memory is disabled.
        """
        if not self.enable:
            return None
        override = transcript.config_override("max_full_exchanges")
        if isinstance(override, int) and not isinstance(override, bool) and override >= 0:
            return override
        if override is not None:
            logger.warning(f"Ignoring invalid max_full_exchanges header: {override!r}")
        return self.max_full_exchanges


def is_preserved(
    index: int,
    target_index: int,
    max_full: int | None,
    exchange: Exchange,
) -> bool:
    """
    Decide whether an exchange is sent in full.

    The window counts the exchanges that precede the target: with a window of
    N, the N exchanges right before the target are kept.
    """
    if index == target_index:
        return True
    if max_full is None or index >= target_index - max_full:
        return True
    return exchange.has_file_references


class ContextBuilder:
    """Builds provider-agnostic message lists from transcripts."""

    def __init__(
        self,
        policy: MemoryPolicy | None = None,
        file_resolver: FileResolver | None = None,
    ):
        self.policy = policy or MemoryPolicy()
        self.file_resolver = file_resolver or LocalFileResolver()

    def resolve_files(self, exchange: Exchange) -> str:
        """Render every file reference of a question, in order."""
        rendered: list[str] = []
        for ref in exchange.question.file_references:
            if ref.resolved_content is None:
                ref.resolved_content = self.file_resolver.resolve(ref.path)
            rendered.append(ref.resolved_content)
        return "\n".join(rendered)

    def _summarized_answer(self, index: int, exchange: Exchange) -> str:
        if exchange.summary is not None:
            return exchange.summary.content
        if self.policy.summary_fallback == "placeholder":
            logger.warning(
                f"Exchange {index} has no summary line; sending placeholder instead"
            )
            return self.policy.omit_user_text
        logger.warning(f"Exchange {index} has no summary line; sending the full answer")
        assert exchange.answer is not None
        return exchange.answer.content

    def build(self, transcript: Transcript, target_index: int) -> list[Message]:
        """
        Build the messages for answering exchange ``target_index``.

        The first message is an empty system slot to be filled by
        apply_system_prompt(). Every exchange up to the target contributes its
        question; exchanges before the target also contribute their answer.

        Raises:
            IndexError: If target_index is out of range
        """
        if not 0 <= target_index < len(transcript.exchanges):
            raise IndexError(
                f"Exchange {target_index} out of range (0..{len(transcript.exchanges) - 1})"
            )

        max_full = self.policy.effective_max_full(transcript)
        messages = [Message(role="", content="")]

        for index, exchange in enumerate(transcript.exchanges[: target_index + 1]):
            preserved = is_preserved(index, target_index, max_full, exchange)
            has_files = exchange.has_file_references

            if has_files:
                logger.debug(f"Exchange {index} preserved due to file references")
                messages.append(
                    Message(role="system", content=self.resolve_files(exchange), cache_hint=True)
                )
                messages.append(Message(role="user", content=exchange.question.content))
            elif preserved:
                messages.append(Message(role="user", content=exchange.question.content))
            else:
                messages.append(Message(role="user", content=self.policy.omit_user_text))

            if index >= target_index or exchange.answer is None:
                continue
            if preserved and not has_files:
                messages.append(Message(role="assistant", content=exchange.answer.content))
            else:
                messages.append(
                    Message(role="assistant", content=self._summarized_answer(index, exchange))
                )

        for message in messages:
            message.content = message.content.strip()
        return messages


def apply_system_prompt(
    messages: list[Message],
    system_prompt: str | None,
    cache_hint: bool = False,
) -> list[Message]:
    """
    Fill the empty system slot left by ContextBuilder.build().

    A blank prompt drops the slot instead.
    """
    result = list(messages)
    has_slot = bool(result) and result[0].role == ""
    prompt = (system_prompt or "").strip()

    if not prompt:
        return result[1:] if has_slot else result

    system = Message(role="system", content=prompt, cache_hint=cache_hint)
    if has_slot:
        result[0] = system
    else:
        result.insert(0, system)
    return result
