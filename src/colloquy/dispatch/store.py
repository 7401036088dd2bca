"""
Request payload store.

Payloads are handed to the transport as files rather than inline
arguments, which avoids argument-length and shell-escaping limits.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from pathlib import Path
from typing import Any

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)


class QueryStore:
    """Writes payload files and keeps their directory bounded."""

    def __init__(self, query_dir: str | Path, max_files: int = 200, keep_files: int = 100):
        self.query_dir = Path(query_dir).expanduser()
        self.max_files = max_files
        self.keep_files = keep_files

    def prepare(self) -> Path:
        """Create the directory and prune it if it grew too large."""
        self.query_dir.mkdir(parents=True, exist_ok=True)
        self.prune()
        return self.query_dir

    def new_path(self) -> Path:
        # names sort by creation time
        stamp = time.strftime("%Y-%m-%d.%H-%M-%S", time.localtime())
        millis = int(time.time() * 1000) % 1000
        return self.query_dir / f"{stamp}.{millis:03d}.{secrets.token_hex(3)}.json"

    async def write(self, payload: dict[str, Any]) -> Path:
        """Write a payload and return its path."""
        self.query_dir.mkdir(parents=True, exist_ok=True)
        path = self.new_path()
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(json.dumps(payload, ensure_ascii=False))
        logger.debug(f"Wrote query payload {path.name}")
        return path

    async def delete(self, path: Path) -> None:
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not delete query payload {path}: {e}")

    def list_files(self) -> list[Path]:
        if not self.query_dir.is_dir():
            return []
        return sorted(self.query_dir.glob("*.json"))

    def prune(self) -> int:
        """
        Remove the oldest payload files once more than max_files exist.

        Returns:
            Number of files removed
        """
        files = self.list_files()
        if len(files) <= self.max_files:
            return 0

        logger.debug(f"Too many query files ({len(files)}), truncating to {self.keep_files}")
        removed = 0
        for path in files[: len(files) - self.keep_files]:
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                logger.warning(f"Could not delete query payload {path}: {e}")
        return removed
