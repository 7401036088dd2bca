"""Subprocess supervision with per-document busy exclusion."""

from colloquy.process.registry import ProcessHandle, ProcessRegistry
from colloquy.process.supervisor import ProcessExit, ProcessSupervisor

__all__ = ["ProcessExit", "ProcessHandle", "ProcessRegistry", "ProcessSupervisor"]
