"""
Configuration management for colloquy.

Provides YAML-based configuration with CLI overrides,
configuration hierarchy (CLI > YAML > Defaults), and validation.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator

DEFAULT_SYSTEM_PROMPT = (
    "A conversation between You and Me. We are peers looking for knowledge "
    "and truth together, so skip excessive politeness.\n\n"
    "Before answering, think through the question and write that reasoning as "
    "a single plaintext line with no line breaks, prefixed with 🧠:.\n\n"
    "Judge how much detail I need from what I already know, and do not repeat "
    "what was said earlier in our chat.\n\n"
    "Use Markdown to structure the answer, but avoid the top two heading levels "
    "(# and ##); they are reserved for me.\n\n"
    "Qualify claims with your confidence. If you do not know, say so instead "
    "of guessing. Never elide code that the answer requires.\n\n"
    "After the answer, write a single plaintext line summarizing my question and "
    "the key points of your answer, in the form: you asked about ..., I answered "
    "with ..., with no line breaks, prefixed with 📝:.\n\n"
    "Leave an empty line between the reasoning line, the answer and the summary line."
)

TOPIC_GEN_PROMPT = (
    "Summarize the topic of our conversation above in two or three words. "
    "Respond only with those words."
)

_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def expand_env_vars(value: str) -> str:
    """
    Expand ${VAR} and ${VAR:-default} references from the environment.

    Unknown variables without a default expand to an empty string.
    """

    def _replace(match: re.Match[str]) -> str:
        name, default = match.group(1), match.group(2)
        return os.environ.get(name, default if default is not None else "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def get_colloquy_home() -> Path:
    """Get colloquy home directory, respecting COLLOQUY_HOME env var."""
    home = os.environ.get("COLLOQUY_HOME")
    if home:
        return Path(home).expanduser()
    return Path.home() / ".colloquy"


class ChatSyntaxConfig(BaseModel):
    """Line prefixes and markers that structure a transcript."""

    user_prefix: str = Field(
        default="💬:",
        description="Prefix of a line that starts a user turn",
    )
    legacy_user_prefix: str = Field(
        default="🗨:",
        description="Older user-turn prefix still recognized when parsing",
    )
    assistant_prefix: str = Field(
        default="🤖:",
        description="Static prefix of a line that starts an assistant turn",
    )
    assistant_suffix: str = Field(
        default="[{{agent}}]",
        description="Template written after the assistant prefix ({{agent}} is the agent name)",
    )
    local_prefix: str = Field(
        default="🔒:",
        description="Prefix of a private section that is never sent to a provider",
    )
    summary_prefix: str = Field(
        default="📝:",
        description="Prefix of the one-line summary inside an answer",
    )
    reasoning_prefix: str = Field(
        default="🧠:",
        description="Prefix of the one-line reasoning inside an answer",
    )
    file_reference_prefix: str = Field(
        default="@@",
        description="Column-1 marker of a file inclusion line inside a question",
    )
    header_separator: str = Field(
        default="---",
        description="Line prefix that ends the transcript header",
    )
    topic_gen_prompt: str = Field(
        default=TOPIC_GEN_PROMPT,
        description="Prompt used to generate a topic when the header topic is '?'",
    )

    @field_validator(
        "user_prefix",
        "assistant_prefix",
        "local_prefix",
        "summary_prefix",
        "reasoning_prefix",
        "file_reference_prefix",
        "header_separator",
    )
    @classmethod
    def validate_non_empty(cls, v: str) -> str:
        """Validate prefix is not empty."""
        if not v:
            raise ValueError("Prefix must not be empty")
        return v


class MemoryConfig(BaseModel):
    """Rules for sending older exchanges in full or as summaries."""

    enable: bool = Field(
        default=True,
        description="Summarize exchanges older than max_full_exchanges",
    )
    max_full_exchanges: int = Field(
        default=5,
        description="Number of most recent exchanges always sent in full",
    )
    omit_user_text: str = Field(
        default="Summarize our chat",
        description="Placeholder sent instead of a summarized question",
    )
    summary_fallback: Literal["full", "placeholder"] = Field(
        default="full",
        description="What to send for a summarized answer that has no summary line",
    )

    @field_validator("max_full_exchanges")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        """Validate value is not negative."""
        if v < 0:
            raise ValueError("max_full_exchanges must not be negative")
        return v


class ProviderSettings(BaseModel):
    """Configuration for a single provider endpoint."""

    endpoint: str = Field(
        description="Endpoint URL template; may contain {{model}} and {{secret}}",
    )
    adapter: Literal["chat_completions", "messages", "contents"] | None = Field(
        default=None,
        description="Wire family; inferred from the provider name when omitted",
    )
    secret: str | list[str] | None = Field(
        default=None,
        description="Literal secret or a command whose stdout is the secret",
    )
    secret_ttl: float | None = Field(
        default=None,
        description="Seconds a resolved secret stays cached (None caches forever)",
    )
    default_max_tokens: int | None = Field(
        default=None,
        description="max_tokens sent when the model does not set one",
    )
    supports_reasoning_effort: bool = Field(
        default=False,
        description="Whether reasoning models accept a reasoning_effort field",
    )
    disable: bool = Field(
        default=False,
        description="Disable this provider",
    )

    def to_provider_config(self, name: str) -> Any:
        """Build the runtime ProviderConfig record for this provider."""
        from colloquy.llm.models import ProviderConfig

        return ProviderConfig(
            name=name,
            endpoint_template=self.endpoint,
            secret_handle=name,
            default_max_tokens=self.default_max_tokens,
            supports_reasoning_effort=self.supports_reasoning_effort,
            adapter=self.adapter,
        )


class AgentConfig(BaseModel):
    """A named provider + model + persona."""

    name: str = Field(description="Agent name")
    provider: str = Field(description="Provider name")
    model: str | dict[str, Any] = Field(
        description="Model name or mapping with 'model' plus request overrides",
    )
    system_prompt: str = Field(
        default=DEFAULT_SYSTEM_PROMPT,
        description="System prompt for this agent",
    )
    disable: bool = Field(default=False, description="Disable this agent")

    @field_validator("model")
    @classmethod
    def validate_model(cls, v: str | dict[str, Any]) -> str | dict[str, Any]:
        """Validate structured models carry a model name."""
        if isinstance(v, dict) and not v.get("model"):
            raise ValueError("Structured model must contain a 'model' key")
        return v


class RawModeConfig(BaseModel):
    """Debugging modes that bypass payload construction or decoding."""

    show_raw_response: bool = Field(
        default=False,
        description="Write the raw provider stream into the transcript as a json block",
    )
    parse_raw_request: bool = Field(
        default=False,
        description="Send a ```json block from the question as the request body",
    )


class DispatchConfig(BaseModel):
    """Transport and process supervision settings."""

    curl_path: str = Field(default="curl", description="Transport executable")
    curl_params: list[str] = Field(
        default_factory=list,
        description="Extra transport arguments (for example a proxy)",
    )
    query_dir: str = Field(
        default="~/.colloquy/query",
        description="Directory for temporary request payloads",
    )
    max_query_files: int = Field(
        default=200,
        description="Payload count above which the query directory is pruned",
    )
    keep_query_files: int = Field(
        default=100,
        description="Payload count kept after pruning",
    )
    timeout: float | None = Field(
        default=600.0,
        description="Seconds before a running request is cancelled (None disables)",
    )
    cancel_grace: float = Field(
        default=2.0,
        description="Seconds between SIGTERM and SIGKILL escalation",
    )
    web_search: bool = Field(
        default=True,
        description="Attach server-side web_search/web_fetch tools for the messages family",
    )
    busy_mode: Literal["reject", "replace"] = Field(
        default="reject",
        description="What a dispatch on a busy document does",
    )

    @field_validator("max_query_files", "keep_query_files")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate value is positive."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: float | None) -> float | None:
        """Validate timeout is positive when set."""
        if v is not None and v <= 0:
            raise ValueError("timeout must be positive")
        return v


class LoggingSettings(BaseModel):
    """Logging configuration."""

    level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Log level",
    )
    file: str | None = Field(
        default="~/.colloquy/logs/colloquy.log",
        description="Log file path (None logs to the console only)",
    )
    max_size_mb: int = Field(
        default=10,
        description="Maximum log file size in MB",
    )
    backup_count: int = Field(
        default=5,
        description="Number of backup log files to keep",
    )

    @field_validator("max_size_mb", "backup_count")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Validate value is positive."""
        if v <= 0:
            raise ValueError("Value must be positive")
        return v


def _default_providers() -> dict[str, ProviderSettings]:
    return {
        "openai": ProviderSettings(
            endpoint="https://api.openai.com/v1/chat/completions",
            secret="${OPENAI_API_KEY}",
            supports_reasoning_effort=True,
        ),
        "anthropic": ProviderSettings(
            endpoint="https://api.anthropic.com/v1/messages",
            secret="${ANTHROPIC_API_KEY}",
        ),
        "googleai": ProviderSettings(
            endpoint=(
                "https://generativelanguage.googleapis.com/v1beta/models/"
                "{{model}}:streamGenerateContent?key={{secret}}"
            ),
            secret="${GOOGLEAI_API_KEY}",
        ),
        "ollama": ProviderSettings(
            endpoint="http://localhost:11434/v1/chat/completions",
            secret="dummy_secret",
            disable=True,
        ),
        "copilot": ProviderSettings(
            endpoint="https://api.githubcopilot.com/chat/completions",
            secret="${GITHUB_TOKEN}",
            secret_ttl=1500.0,
            supports_reasoning_effort=True,
            disable=True,
        ),
        "azure": ProviderSettings(
            endpoint=(
                "https://example.openai.azure.com/openai/deployments/{{model}}"
                "/chat/completions?api-version=2024-06-01"
            ),
            secret="${AZURE_API_KEY}",
            disable=True,
        ),
    }


def _default_agents() -> list[AgentConfig]:
    return [
        AgentConfig(
            name="ChatGPT4o",
            provider="openai",
            model={"model": "gpt-4o", "temperature": 1.1, "top_p": 1},
        ),
        AgentConfig(
            name="ChatGPT5",
            provider="openai",
            model={"model": "gpt-5", "reasoning_effort": "low"},
        ),
        AgentConfig(
            name="Claude-Sonnet",
            provider="anthropic",
            model={"model": "claude-sonnet-4-20250514", "temperature": 0.8, "top_p": 1},
        ),
        AgentConfig(
            name="Claude-Haiku",
            provider="anthropic",
            model={"model": "claude-3-5-haiku-latest", "temperature": 0.8, "top_p": 1},
        ),
        AgentConfig(
            name="Gemini2.5-Pro",
            provider="googleai",
            model={"model": "gemini-2.5-pro", "temperature": 1.1, "top_p": 1},
        ),
        AgentConfig(
            name="Gemini2.5-Flash",
            provider="googleai",
            model={"model": "gemini-2.5-flash", "temperature": 1.1, "top_p": 1},
        ),
        AgentConfig(
            name="Ollama-Llama3.1-8B",
            provider="ollama",
            model={"model": "llama3.1", "temperature": 0.6, "top_p": 1, "min_p": 0.05},
            disable=True,
        ),
    ]


class ColloquyConfig(BaseModel):
    """
    Main configuration for colloquy.

    Configuration is loaded with the following priority:
    1. CLI arguments (highest)
    2. YAML file (~/.colloquy/config.yaml)
    3. Defaults (lowest)
    """

    chat: ChatSyntaxConfig = Field(
        default_factory=ChatSyntaxConfig,
        description="Transcript syntax",
    )
    memory: MemoryConfig = Field(
        default_factory=MemoryConfig,
        description="Chat memory (summarization) policy",
    )
    providers: dict[str, ProviderSettings] = Field(
        default_factory=_default_providers,
        description="Provider endpoints keyed by provider name",
    )
    api_keys: dict[str, str | list[str]] = Field(
        default_factory=dict,
        description="Provider secrets; override ProviderSettings.secret",
    )
    agents: list[AgentConfig] = Field(
        default_factory=_default_agents,
        description="Available agents",
    )
    default_agent: str | None = Field(
        default=None,
        description="Agent used when none is selected (first enabled agent if unset)",
    )
    system_prompts: dict[str, str] = Field(
        default_factory=lambda: {"default": DEFAULT_SYSTEM_PROMPT},
        description="Named system prompts",
    )
    raw_mode: RawModeConfig = Field(
        default_factory=RawModeConfig,
        description="Raw request/response debugging modes",
    )
    dispatch: DispatchConfig = Field(
        default_factory=DispatchConfig,
        description="Transport and process settings",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging configuration",
    )

    def get_enabled_providers(self) -> list[str]:
        """Return list of enabled provider names."""
        return [name for name, p in self.providers.items() if not p.disable]

    def get_provider(self, name: str) -> ProviderSettings:
        """
        Get an enabled provider by name.

        Raises:
            UnknownProviderError: If the provider is missing or disabled.
        """
        from colloquy.errors import UnknownProviderError

        provider = self.providers.get(name)
        if provider is None or provider.disable:
            raise UnknownProviderError(name, self.get_enabled_providers())
        return provider

    def get_enabled_agents(self) -> list[AgentConfig]:
        """Return agents that are enabled and whose provider is enabled."""
        enabled = set(self.get_enabled_providers())
        return [a for a in self.agents if not a.disable and a.provider in enabled]

    def get_agent(self, name: str | None = None) -> AgentConfig:
        """
        Get an agent by name, falling back to default_agent, then the first enabled one.

        Raises:
            ValueError: If no matching agent is available.
        """
        agents = self.get_enabled_agents()
        wanted = name or self.default_agent
        if wanted:
            for agent in agents:
                if agent.name == wanted:
                    return agent
            raise ValueError(f"Agent '{wanted}' not found among enabled agents")
        if not agents:
            raise ValueError("No enabled agents configured")
        return agents[0]

    def get_secret_spec(self, provider: str) -> str | list[str] | None:
        """Return the configured secret for a provider (api_keys wins)."""
        if provider in self.api_keys:
            return self.api_keys[provider]
        settings = self.providers.get(provider)
        return settings.secret if settings else None


def default_config_path() -> Path:
    """Return the default configuration file path."""
    return get_colloquy_home() / "config.yaml"


def load_yaml(config_file: str) -> dict[str, Any]:
    """
    Load YAML or JSON configuration file.

    Args:
        config_file: Path to YAML or JSON configuration file

    Returns:
        Dictionary with parsed YAML/JSON content

    Raises:
        ValueError: If YAML/JSON is invalid or file format is wrong
    """
    config_path = Path(config_file).expanduser()

    if not config_path.exists():
        return {}

    file_ext = config_path.suffix.lower()
    if file_ext not in [".yaml", ".yml", ".json"]:
        raise ValueError(
            f"Config file must have .yaml, .yml, or .json extension, got: {file_ext}\n"
            f"File: {config_path}"
        )

    try:
        with open(config_path, encoding="utf-8") as f:
            content = f.read()

        if file_ext == ".json":
            return json.loads(content) if content.strip() else {}

        data = yaml.safe_load(content)
        return data if data is not None else {}

    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in config file: {e}") from e
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in config file: {e}") from e


def apply_cli_overrides(
    config_dict: dict[str, Any],
    cli_overrides: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Apply CLI argument overrides to config dictionary.

    Args:
        config_dict: Configuration dictionary
        cli_overrides: Dictionary of CLI overrides; dotted keys address nested values

    Returns:
        Configuration dictionary with CLI overrides applied
    """
    if cli_overrides is None:
        return config_dict

    for key, value in cli_overrides.items():
        if "." in key:
            parts = key.split(".")
            current = config_dict
            for part in parts[:-1]:
                if part not in current:
                    current[part] = {}
                current = current[part]
            current[parts[-1]] = value
        else:
            config_dict[key] = value

    return config_dict


def generate_default_config(config_file: str) -> None:
    """
    Generate default configuration file from Pydantic model defaults.

    Args:
        config_file: Path where to create the config file
    """
    config_path = Path(config_file).expanduser()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    default_config = ColloquyConfig().model_dump(mode="python", exclude_none=True)

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(default_config, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    # api keys may end up in this file
    config_path.chmod(0o600)


def load_config(
    config_file: str | None = None,
    cli_overrides: dict[str, Any] | None = None,
    create_default: bool = False,
) -> ColloquyConfig:
    """
    Load configuration with hierarchy: CLI > YAML > Defaults.

    Args:
        config_file: Path to YAML config file (default: ~/.colloquy/config.yaml)
        cli_overrides: Dictionary of CLI argument overrides
        create_default: Create default config file if it doesn't exist

    Returns:
        Validated ColloquyConfig instance

    Raises:
        ValueError: If configuration is invalid
    """
    if config_file is None:
        config_file = str(default_config_path())

    config_path = Path(config_file).expanduser()

    if create_default and not config_path.exists():
        generate_default_config(config_file)

    config_dict = load_yaml(config_file)
    config_dict = apply_cli_overrides(config_dict, cli_overrides)

    try:
        return ColloquyConfig(**config_dict)
    except Exception as e:
        raise ValueError(
            f"Configuration validation failed: {e}\n"
            f"Please check your configuration file at {config_file}"
        ) from e


def save_config(config: ColloquyConfig, config_file: str | None = None) -> None:
    """
    Save configuration to YAML file.

    Args:
        config: ColloquyConfig instance to save
        config_file: Path to YAML config file (default: ~/.colloquy/config.yaml)

    Raises:
        OSError: If file operations fail
    """
    if config_file is None:
        config_file = str(default_config_path())

    config_path = Path(config_file).expanduser()
    config_path.parent.mkdir(parents=True, exist_ok=True)

    config_dict = config.model_dump(mode="python", exclude_none=True)

    with open(config_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config_dict, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    config_path.chmod(0o600)
