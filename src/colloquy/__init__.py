"""colloquy - plain-text chat transcripts streamed against LLM providers."""

__version__ = "0.4.0"
