"""
Synchronous runner for external tools (git, nuget, msbuild).

Every call blocks until the child process exits. A non-zero exit status
raises ToolInvocationError so the enclosing workflow aborts immediately.
"""

import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

from .error_handling import (
    ErrorCategory,
    MissingResourceError,
    ToolInvocationError,
    get_error_handler,
    log_tool_error,
    redact_command,
)
from .structured_logging import log_tool_invocation


@dataclass(frozen=True)
class ToolResult:
    """Captured output of a finished tool run."""

    command: List[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def lines(self) -> List[str]:
        return self.stdout.splitlines()


class ToolRunner:
    """Runs external commands and enforces the fail-fast policy."""

    def resolve_executable(self, executable: str) -> str:
        """
        Find an executable on PATH or as an explicit file path.

        Raises:
            MissingResourceError: If the tool is not installed
        """
        located = shutil.which(executable)
        if located:
            return located
        if Path(executable).is_file():
            return executable

        get_error_handler().critical(
            ErrorCategory.MISSING_RESOURCE,
            f"Required tool not found: {executable}",
            "tools",
            "resolve_executable",
            suggestions=[f"Install {executable} or set its path in the tools config section"],
        )
        raise MissingResourceError(f"Required tool not found: {executable}")

    def run(
        self,
        command: Sequence[Union[str, Path]],
        cwd: Optional[Path] = None,
    ) -> ToolResult:
        """
        Run a command and capture its output.

        Args:
            command: Executable followed by its arguments
            cwd: Working directory

        Returns:
            ToolResult for a zero exit status

        Raises:
            MissingResourceError: If the executable cannot be found
            ToolInvocationError: If the command exits non-zero or cannot be
                started
        """
        if not command:
            raise ValueError("Command must not be empty")

        args = [str(arg) for arg in command]
        executable = self.resolve_executable(args[0])
        cwd_str = str(cwd) if cwd is not None else None

        start = time.monotonic()
        try:
            completed = subprocess.run(
                [executable, *args[1:]],
                cwd=cwd_str,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            # 126 is the shell's "cannot execute" status
            error = ToolInvocationError(args, 126, stderr=str(e), cwd=cwd_str)
            log_tool_error(error, "tools", "run")
            raise error from e
        duration_ms = int((time.monotonic() - start) * 1000)

        log_tool_invocation(
            Path(args[0]).name,
            redact_command(args),
            cwd_str,
            completed.returncode,
            duration_ms,
        )

        if completed.returncode != 0:
            error = ToolInvocationError(
                args,
                completed.returncode,
                stdout=completed.stdout or "",
                stderr=completed.stderr or "",
                cwd=cwd_str,
            )
            log_tool_error(error, "tools", "run")
            raise error

        return ToolResult(
            command=args,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
