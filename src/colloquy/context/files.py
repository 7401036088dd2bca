"""
File reference resolution.

Renders the files named by ``@@path`` question lines into the text that is
sent to the provider as a cacheable system message.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

# Fence language for common extensions; anything else uses the bare suffix
_FENCE_LANGUAGES = {
    "py": "python",
    "js": "javascript",
    "ts": "typescript",
    "tsx": "typescriptreact",
    "jsx": "javascriptreact",
    "rs": "rust",
    "rb": "ruby",
    "sh": "sh",
    "bash": "sh",
    "md": "markdown",
    "yml": "yaml",
    "yaml": "yaml",
    "lua": "lua",
    "go": "go",
    "c": "c",
    "h": "c",
    "cpp": "cpp",
    "hpp": "cpp",
    "java": "java",
    "json": "json",
    "toml": "toml",
    "html": "html",
    "css": "css",
    "sql": "sql",
}


class FileResolver(Protocol):
    """Turns a file reference path into text for the model."""

    def resolve(self, path: str) -> str: ...


def is_directory_pattern(path: str) -> bool:
    """Check whether ``path`` names a directory listing or a glob."""
    return path.endswith("/") or "*" in path or Path(path).expanduser().is_dir()


class LocalFileResolver:
    """
    Resolves references against the local filesystem.

    Single files render as ``File: <path>`` plus a fenced, line-numbered body.
    Directories and glob patterns (``dir/``, ``dir/*.py``, ``dir/**/*.py``)
    render every matching file under a directory listing heading.
    """

    def __init__(self, base_dir: str | Path | None = None):
        self.base_dir = Path(base_dir).expanduser() if base_dir else None

    def _expand(self, path: str) -> Path:
        expanded = Path(path).expanduser()
        if not expanded.is_absolute() and self.base_dir is not None:
            expanded = self.base_dir / expanded
        return expanded

    def resolve(self, path: str) -> str:
        if is_directory_pattern(path):
            return self.render_directory(path)
        return self.render_file(path)

    def render_file(self, path: str) -> str:
        """Render one file with line numbers inside a fenced block."""
        file_path = self._expand(path)
        try:
            content = file_path.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.warning(f"Could not read referenced file {path}: {e}")
            return f"Error: Could not read file {path}"

        content = content.removesuffix("\n")
        suffix = file_path.suffix.lstrip(".").lower()
        language = _FENCE_LANGUAGES.get(suffix, suffix)
        numbered = "\n".join(
            f"{number}: {line}" for number, line in enumerate(content.split("\n"), start=1)
        )
        return f"File: {path}\n```{language}\n{numbered}\n```\n\n"

    def find_files(self, dirspec: str) -> list[Path]:
        """Return files matched by a directory path or glob pattern, sorted."""
        if "*" in dirspec:
            star = dirspec.index("*")
            root_text, pattern = dirspec[:star], dirspec[star:]
            root = self._expand(root_text.rstrip("/") or ".")
        else:
            root = self._expand(dirspec.rstrip("/") or ".")
            pattern = "*"

        if not root.is_dir():
            logger.warning(f"Directory not found: {root}")
            return []

        matches = sorted(p for p in root.glob(pattern) if p.is_file())
        logger.debug(f"Found {len(matches)} files for pattern {dirspec}")
        return matches

    def render_directory(self, dirspec: str) -> str:
        """Render every file matched by ``dirspec``."""
        files = self.find_files(dirspec)
        if not files:
            return f"No files found matching pattern: {dirspec}"

        parts = [f"Directory listing for {dirspec} ({len(files)} files):\n"]
        parts.extend(self.render_file(str(f)) for f in files)
        return "\n".join(parts)
