"""Async subprocess execution for git and validation commands.

Runs a command in a working directory with a timeout and captures its
combined stdout and stderr. Timeouts and launch failures are reported in
the returned CommandResult rather than raised, so callers decide whether
a failed command is fatal.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Result of a single command execution.

    Attributes:
        exit_code: Process exit code (-1 for timeout/OS errors).
        output: Combined stdout and stderr.
        duration_seconds: Wall-clock execution time.
        timed_out: True when the process was killed for exceeding its timeout.
    """

    exit_code: int
    output: str
    duration_seconds: float
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


class CommandRunner:
    """Executes commands as async subprocesses.

    Example:
        >>> runner = CommandRunner()
        >>> result = await runner.run(["git", "status"], cwd=Path("/repo"), timeout=30)
        >>> result.success
        True
    """

    def __init__(self, env: Optional[Dict[str, str]] = None):
        """Initialize the runner.

        Args:
            env: Optional full environment for child processes
                 (None inherits the service environment).
        """
        self.env = env

    async def run(
        self,
        args: Sequence[str],
        cwd: Union[str, Path],
        timeout: float,
    ) -> CommandResult:
        """Run a command to completion or timeout.

        Args:
            args: Program and arguments (no shell interpretation).
            cwd: Working directory.
            timeout: Seconds before the process is killed.

        Returns:
            CommandResult with combined output.
        """
        start_time = time.monotonic()
        display = " ".join(args[:2])

        logger.debug(
            "Running command",
            extra={"command": display, "cwd": str(cwd), "timeout": timeout},
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd),
                env=self.env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            logger.error(
                "Failed to start command",
                extra={"command": display, "error": str(exc)},
            )
            return CommandResult(
                exit_code=-1,
                output=f"Failed to start {args[0]}: {exc}",
                duration_seconds=time.monotonic() - start_time,
            )

        try:
            stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            return await self._handle_timeout(process, display, timeout, start_time)

        duration = time.monotonic() - start_time
        output = (stdout or b"").decode("utf-8", errors="replace")
        exit_code = process.returncode if process.returncode is not None else -1

        log = logger.debug if exit_code == 0 else logger.warning
        log(
            "Command finished",
            extra={
                "command": display,
                "exit_code": exit_code,
                "duration_seconds": round(duration, 2),
            },
        )

        return CommandResult(
            exit_code=exit_code,
            output=output,
            duration_seconds=duration,
        )

    async def _handle_timeout(
        self,
        process: asyncio.subprocess.Process,
        display: str,
        timeout: float,
        start_time: float,
    ) -> CommandResult:
        """Kill the process and return a timeout failure result."""
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()

        logger.error(
            "Command timed out",
            extra={"command": display, "timeout": timeout},
        )
        return CommandResult(
            exit_code=-1,
            output=f"Command timed out after {timeout}s",
            duration_seconds=time.monotonic() - start_time,
            timed_out=True,
        )
