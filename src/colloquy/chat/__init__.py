"""Chat documents: answering questions in place and streaming the response."""

from colloquy.chat.agents import AgentInfo, decode_header_model, resolve_agent_info
from colloquy.chat.document import DocumentSink, FileDocument, InMemoryDocument
from colloquy.chat.responder import ChatResponder, PreparedRequest, ResubmitDriver
from colloquy.chat.writer import StreamWriter

__all__ = [
    "AgentInfo",
    "ChatResponder",
    "DocumentSink",
    "FileDocument",
    "InMemoryDocument",
    "PreparedRequest",
    "ResubmitDriver",
    "StreamWriter",
    "decode_header_model",
    "resolve_agent_info",
]
