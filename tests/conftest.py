"""Pytest configuration and shared fixtures for colloquy tests."""

import tempfile
from collections.abc import Iterator
from pathlib import Path

import pytest

from colloquy.config.app import ColloquyConfig, LoggingSettings


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def default_config(temp_dir: Path) -> ColloquyConfig:
    """Create a default ColloquyConfig that writes nothing outside temp_dir."""
    config = ColloquyConfig(logging=LoggingSettings(file=None))
    config.dispatch.query_dir = str(temp_dir / "query")
    return config


@pytest.fixture
def two_exchange_chat() -> str:
    """A transcript with one answered exchange and one open question."""
    return "\n".join(
        [
            "# topic: testing",
            "- provider: openai",
            "---",
            "",
            "💬: What is 2+2?",
            "",
            "🤖:[ChatGPT4o]",
            "🧠: simple arithmetic",
            "It is 4.",
            "📝: you asked about 2+2, I answered 4",
            "",
            "💬: And 3+3?",
            "",
        ]
    )


@pytest.fixture
def single_question_chat() -> str:
    """A transcript with a single unanswered question."""
    return "\n".join(["# topic: greetings", "---", "", "💬: Say hello", ""])
