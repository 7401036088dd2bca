"""
Shared utilities for CLI commands.
"""

import asyncio
import logging
from collections.abc import Coroutine
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, TypeVar

import click

from colloquy.chat.document import FileDocument
from colloquy.config.app import ColloquyConfig, LoggingSettings
from colloquy.errors import ColloquyError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logging(verbose: bool = False, settings: LoggingSettings | None = None) -> None:
    """
    Configure logging for CLI.

    Args:
        verbose: If True, enable DEBUG level logging
        settings: Logging section of the config (level and optional log file)
    """
    settings = settings or LoggingSettings()
    log_level = logging.DEBUG if verbose else _LEVELS[settings.level]
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if settings.file:
        root = logging.getLogger()
        log_file_path = Path(settings.file).expanduser()
        if any(
            isinstance(h, RotatingFileHandler) and Path(h.baseFilename) == log_file_path.resolve()
            for h in root.handlers
        ):
            return
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file_path,
            maxBytes=settings.max_size_mb * 1024 * 1024,
            backupCount=settings.backup_count,
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        root.addHandler(file_handler)


def get_config(ctx: click.Context) -> ColloquyConfig:
    config: ColloquyConfig = ctx.obj["config"]
    return config


def open_document(path: str) -> FileDocument:
    """Load a chat document, turning I/O errors into CLI errors."""
    try:
        return FileDocument(path)
    except OSError as e:
        raise click.ClickException(f"Cannot read {path}: {e}") from e


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine to completion, reporting library errors as CLI errors."""
    try:
        return asyncio.run(coro)
    except (ColloquyError, ValueError) as e:
        raise click.ClickException(str(e)) from e
