"""Subprocess runner for git and lint/build/test commands.

This module manages command execution:
- Subprocess invocation in a working directory
- Timeout enforcement
- Combined stdout/stderr capture
"""

from src.bugfixer.runner.command import CommandResult, CommandRunner

__all__ = ["CommandResult", "CommandRunner"]
