"""
Provider secret resolution.

A provider secret is configured as a literal (with ``${VAR}`` expansion) or
as a command whose trimmed stdout is the secret. Resolved values are cached
per provider, optionally for a limited time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from typing import Protocol

from colloquy.config.app import ColloquyConfig, expand_env_vars
from colloquy.errors import SecretResolutionError

logger = logging.getLogger(__name__)

SECRET_COMMAND_TIMEOUT = 30.0

SecretSpec = str | list[str]


class SecretResolver(Protocol):
    """Resolves a provider's secret handle into a bearer string."""

    async def resolve(self, provider: str) -> str: ...


class ConfigSecretResolver:
    """
    Resolve secrets from configuration.

    Example:
        >>> resolver = ConfigSecretResolver.from_config(config)
        >>> bearer = await resolver.resolve("openai")
    """

    def __init__(
        self,
        secrets: Mapping[str, SecretSpec | None],
        ttls: Mapping[str, float | None] | None = None,
    ):
        """
        Initialize ConfigSecretResolver.

        Args:
            secrets: Secret spec per provider (literal or command argv)
            ttls: Seconds a resolved secret stays valid, per provider
        """
        self._secrets = dict(secrets)
        self._ttls = dict(ttls or {})
        self._cache: dict[str, tuple[str, float | None]] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_config(cls, config: ColloquyConfig) -> ConfigSecretResolver:
        secrets = {name: config.get_secret_spec(name) for name in config.providers}
        for name in config.api_keys:
            secrets.setdefault(name, config.api_keys[name])
        ttls = {name: p.secret_ttl for name, p in config.providers.items()}
        return cls(secrets, ttls)

    def invalidate(self, provider: str) -> None:
        """Drop a cached secret so the next resolve() fetches it again."""
        if self._cache.pop(provider, None) is not None:
            logger.debug(f"Invalidated cached secret for {provider}")

    def _cached(self, provider: str) -> str | None:
        entry = self._cache.get(provider)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            self._cache.pop(provider, None)
            return None
        return value

    async def resolve(self, provider: str) -> str:
        """
        Return the bearer string for ``provider``.

        Raises:
            SecretResolutionError: If no secret is configured, it expands to
                nothing, or the secret command fails
        """
        cached = self._cached(provider)
        if cached is not None:
            return cached

        lock = self._locks.setdefault(provider, asyncio.Lock())
        async with lock:
            cached = self._cached(provider)
            if cached is not None:
                return cached

            spec = self._secrets.get(provider)
            if spec is None:
                raise SecretResolutionError(provider, "no secret configured")

            if isinstance(spec, list):
                value = await self._run_command(provider, spec)
            else:
                value = expand_env_vars(spec).strip()
            if not value:
                raise SecretResolutionError(provider, "secret is empty")

            ttl = self._ttls.get(provider)
            expires_at = time.monotonic() + ttl if ttl else None
            self._cache[provider] = (value, expires_at)
            return value

    async def _run_command(self, provider: str, argv: list[str]) -> str:
        if not argv:
            raise SecretResolutionError(provider, "secret command is empty")
        argv = [expand_env_vars(arg) for arg in argv]
        logger.debug(f"Running secret command for {provider}: {argv[0]}")

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SecretResolutionError(provider, f"cannot run {argv[0]}: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=SECRET_COMMAND_TIMEOUT
            )
        except TimeoutError as e:
            process.kill()
            await process.wait()
            raise SecretResolutionError(provider, f"{argv[0]} timed out") from e

        if process.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise SecretResolutionError(
                provider, f"{argv[0]} exited with {process.returncode}: {detail}"
            )
        return stdout.decode("utf-8", errors="replace").strip()
