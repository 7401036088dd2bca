"""
Configuration package for colloquy.

This package provides Pydantic config models for transcript syntax,
memory policy, providers, agents, dispatch and logging.
"""

from colloquy.config.app import (
    DEFAULT_SYSTEM_PROMPT,
    AgentConfig,
    ChatSyntaxConfig,
    ColloquyConfig,
    DispatchConfig,
    LoggingSettings,
    MemoryConfig,
    ProviderSettings,
    RawModeConfig,
    expand_env_vars,
    get_colloquy_home,
    load_config,
    save_config,
)

__all__ = [
    "DEFAULT_SYSTEM_PROMPT",
    "AgentConfig",
    "ChatSyntaxConfig",
    "ColloquyConfig",
    "DispatchConfig",
    "LoggingSettings",
    "MemoryConfig",
    "ProviderSettings",
    "RawModeConfig",
    "expand_env_vars",
    "get_colloquy_home",
    "load_config",
    "save_config",
]
