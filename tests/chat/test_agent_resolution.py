"""Tests for agent resolution from configuration and transcript headers."""

import pytest

from colloquy.chat.agents import decode_header_model, resolve_agent_info
from colloquy.config.app import ColloquyConfig

pytestmark = pytest.mark.unit


class TestDecodeHeaderModel:
    """Tests for decode_header_model."""

    def test_plain_name(self) -> None:
        """Plain names are returned trimmed."""
        assert decode_header_model("  gpt-4o ") == "gpt-4o"

    def test_json_object(self) -> None:
        """JSON objects with a model key are decoded."""
        assert decode_header_model('{"model": "m", "temperature": 0.2}') == {
            "model": "m",
            "temperature": 0.2,
        }

    def test_invalid_json_kept_as_text(self) -> None:
        """Broken JSON falls back to the raw text."""
        assert decode_header_model("{not json}") == "{not json}"

    def test_json_without_model(self) -> None:
        """JSON without a model name falls back to the raw text."""
        assert decode_header_model('{"temperature": 1}') == '{"temperature": 1}'


class TestResolveAgentInfo:
    """Tests for resolve_agent_info."""

    def test_default_agent(self, default_config: ColloquyConfig) -> None:
        """Without headers the first enabled agent is used as configured."""
        info = resolve_agent_info(default_config, {})
        assert info.name == "ChatGPT4o"
        assert info.provider == "openai"
        assert info.model.name == "gpt-4o"
        assert info.model.temperature == 1.1
        assert info.display_name == "ChatGPT4o"

    def test_named_agent(self, default_config: ColloquyConfig) -> None:
        """An explicit agent name selects that agent."""
        info = resolve_agent_info(default_config, {}, "Claude-Haiku")
        assert info.provider == "anthropic"
        assert info.model.name == "claude-3-5-haiku-latest"

    def test_unknown_agent(self, default_config: ColloquyConfig) -> None:
        """Unknown agents raise ValueError."""
        with pytest.raises(ValueError, match="not found"):
            resolve_agent_info(default_config, {}, "Nope")

    def test_header_provider_and_model(self, default_config: ColloquyConfig) -> None:
        """provider and model headers override the agent."""
        info = resolve_agent_info(
            default_config, {"provider": "anthropic", "model": "claude-opus-4"}
        )
        assert info.provider == "anthropic"
        assert info.model.name == "claude-opus-4"
        assert info.model.params == {}
        assert info.display_name == "claude-opus-4"

    def test_header_model_json(self, default_config: ColloquyConfig) -> None:
        """A JSON model header carries request overrides."""
        info = resolve_agent_info(default_config, {"model": '{"model": "m", "top_p": 0.5}'})
        assert info.model.name == "m"
        assert info.model.top_p == 0.5
        assert info.display_name == "m"

    def test_header_role(self, default_config: ColloquyConfig) -> None:
        """role replaces the system prompt and marks the display name."""
        info = resolve_agent_info(
            default_config, {"model": "m", "role": "Be terse.\\nAlways."}
        )
        assert info.system_prompt == "Be terse.\nAlways."
        assert info.display_name == "m & custom role"

    def test_role_without_model(self, default_config: ColloquyConfig) -> None:
        """role alone keeps the agent's display name."""
        info = resolve_agent_info(default_config, {"role": "Pirate"})
        assert info.system_prompt == "Pirate"
        assert info.display_name == "ChatGPT4o"

    def test_named_system_prompt(self, default_config: ColloquyConfig) -> None:
        """A known system prompt name replaces the agent's prompt."""
        default_config.system_prompts["short"] = "Be short."
        assert resolve_agent_info(default_config, {}, None, "short").system_prompt == "Be short."

    def test_unknown_system_prompt(self, default_config: ColloquyConfig) -> None:
        """An unknown system prompt name keeps the agent's prompt."""
        info = resolve_agent_info(default_config, {}, None, "missing")
        assert info.system_prompt == default_config.get_agent().system_prompt

    def test_blank_headers_ignored(self, default_config: ColloquyConfig) -> None:
        """Blank header values do not override anything."""
        info = resolve_agent_info(default_config, {"provider": " ", "model": ""})
        assert info.provider == "openai"
        assert info.model.name == "gpt-4o"
