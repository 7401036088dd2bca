"""Context building: transcript exchanges to provider-agnostic messages."""

from colloquy.context.builder import ContextBuilder, MemoryPolicy, apply_system_prompt, is_preserved
from colloquy.context.files import FileResolver, LocalFileResolver

__all__ = [
    "ContextBuilder",
    "FileResolver",
    "LocalFileResolver",
    "MemoryPolicy",
    "apply_system_prompt",
    "is_preserved",
]
