"""
Agent resolution.

Combines the configured agent with the transcript's header overrides
(provider, model, role) into the provider, model and system prompt used for
a request.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

from colloquy.config.app import ColloquyConfig
from colloquy.llm.models import ConfiguredModel, normalize_model

logger = logging.getLogger(__name__)


@dataclass
class AgentInfo:
    """Resolved agent for one request."""

    name: str
    """Configured agent name."""

    provider: str
    model: ConfiguredModel
    system_prompt: str
    display_name: str
    """Name written into the assistant header line."""


def decode_header_model(value: str) -> str | dict[str, Any]:
    """Decode a ``model`` header; JSON objects become structured models."""
    text = value.strip()
    if not (text.startswith("{") and text.endswith("}")):
        return text
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError:
        logger.warning(f"Failed to parse model JSON: {text}")
        return text
    if not isinstance(decoded, dict) or not decoded.get("model"):
        logger.warning(f"Model JSON has no model name: {text}")
        return text
    return decoded


def resolve_agent_info(
    config: ColloquyConfig,
    headers: dict[str, Any],
    agent_name: str | None = None,
    system_prompt_name: str | None = None,
) -> AgentInfo:
    """
    Resolve the agent for a transcript.

    Args:
        config: Loaded configuration
        headers: Transcript headers
        agent_name: Agent to use (default agent when None)
        system_prompt_name: Named system prompt replacing the agent's own

    Raises:
        ValueError: If the agent is unknown
    """
    agent = config.get_agent(agent_name)
    system_prompt = agent.system_prompt
    if system_prompt_name:
        if system_prompt_name in config.system_prompts:
            system_prompt = config.system_prompts[system_prompt_name]
        else:
            logger.warning(f"Unknown system prompt '{system_prompt_name}', using the agent's")

    provider = agent.provider
    model: str | dict[str, Any] = agent.model
    display_name = agent.name

    header_provider = headers.get("provider")
    if isinstance(header_provider, str) and header_provider.strip():
        provider = header_provider.strip()

    header_role = headers.get("role")
    has_role = isinstance(header_role, str) and bool(header_role.strip())
    if has_role:
        system_prompt = header_role.replace("\\n", "\n")

    header_model = headers.get("model")
    if isinstance(header_model, str) and header_model.strip():
        model = decode_header_model(header_model)
        display_name = model["model"] if isinstance(model, dict) else model
        if has_role:
            display_name = f"{display_name} & custom role"

    return AgentInfo(
        name=agent.name,
        provider=provider,
        model=normalize_model(model),
        system_prompt=system_prompt,
        display_name=str(display_name),
    )
