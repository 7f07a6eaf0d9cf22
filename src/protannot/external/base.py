"""
Base classes for wrapping external bioinformatics tools.

Provides a consistent interface for executing command-line tools
with proper error handling, timeout and cancellation support, and
dry-run capability.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from protannot.core.exceptions import ProtannotError

logger = logging.getLogger(__name__)

# Pattern for safe path characters (alphanumeric, underscore, hyphen, dot, slash)
_SAFE_PATH_PATTERN = re.compile(r"^[\w\-./]+$")


class UnsafePathError(ProtannotError):
    """Raised when a file path contains potentially unsafe characters."""

    def __init__(self, path: Path, reason: str = ""):
        detail = f": {reason}" if reason else ""
        super().__init__(
            message=f"Unsafe path detected: {path}{detail}",
            suggestion=(
                "Ensure file paths contain only alphanumeric characters, "
                "underscores, hyphens, and periods. Avoid spaces and special characters."
            ),
        )
        self.path = path


def validate_path_safe(
    path: Path,
    *,
    must_exist: bool = False,
    resolve: bool = True,
) -> Path:
    """Validate that a path is safe for use in subprocess commands.

    Args:
        path: Path to validate
        must_exist: If True, raise error if path doesn't exist
        resolve: If True, resolve the path to its absolute form

    Returns:
        The validated (and optionally resolved) path

    Raises:
        UnsafePathError: If path contains a null byte
        FileNotFoundError: If must_exist=True and path doesn't exist
    """
    if resolve:
        path = path.resolve()

    path_str = str(path)

    if "\x00" in path_str:
        raise UnsafePathError(path, "contains null byte")

    # BLAST splits -db on spaces to allow multiple databases
    if not _SAFE_PATH_PATTERN.match(path_str):
        logger.warning(
            "Path contains unusual characters (may cause issues): %s",
            path,
        )

    if must_exist and not path.exists():
        raise FileNotFoundError(f"Path does not exist: {path}")

    return path


class ToolLaunchError(ProtannotError):
    """Raised when an external tool cannot be started (missing or not executable)."""

    def __init__(self, tool_name: str, install_hint: str = "", reason: str = ""):
        suggestion = f"Install {tool_name} and ensure it is in your PATH."
        if install_hint:
            suggestion = f"{suggestion}\n\nInstallation:\n  {install_hint}"

        detail = f": {reason}" if reason else ""
        super().__init__(
            message=f"Cannot launch required tool '{tool_name}'{detail}",
            suggestion=suggestion,
        )
        self.tool_name = tool_name
        self.reason = reason


class ToolExecutionError(ProtannotError):
    """Raised when an external tool returns a non-zero exit code."""

    def __init__(
        self,
        tool_name: str,
        command: list[str],
        return_code: int,
        output: str,
    ):
        cmd_str = " ".join(command)
        if len(cmd_str) > 200:
            cmd_str = cmd_str[:200] + "..."

        output_display = output.strip()
        if len(output_display) > 500:
            output_display = output_display[:500] + "\n...[truncated]"

        super().__init__(
            message=(
                f"{tool_name} failed with exit code {return_code}\n\n"
                f"Command: {cmd_str}\n\n"
                f"Tool output:\n{output_display}"
            ),
            suggestion=(
                "Check the database path and query sequences. "
                "Run with --verbose for detailed output."
            ),
        )
        self.tool_name = tool_name
        self.command = command
        self.return_code = return_code
        self.output = output


class ToolInterruptedError(ProtannotError):
    """Raised when a running tool was terminated (timeout or cancellation)."""

    def __init__(self, tool_name: str, command: list[str], reason: str):
        cmd_str = " ".join(command)
        if len(cmd_str) > 200:
            cmd_str = cmd_str[:200] + "..."

        super().__init__(
            message=f"{tool_name} was interrupted: {reason}\n\nCommand: {cmd_str}",
            suggestion=(
                "Increase the timeout or use a smaller --batch-size. "
                "Already committed batches are kept."
            ),
        )
        self.tool_name = tool_name
        self.command = command
        self.reason = reason


@dataclass(frozen=True)
class ToolResult:
    """Result from running an external tool.

    Attributes:
        command: The command that was executed.
        return_code: Exit code from the process.
        output: Standard output with standard error merged in.
        elapsed_seconds: Wall-clock time for execution.
    """

    command: tuple[str, ...]
    return_code: int
    output: str
    elapsed_seconds: float

    @property
    def success(self) -> bool:
        """Return True if the tool exited with code 0."""
        return self.return_code == 0

    @property
    def command_string(self) -> str:
        """Return the command as a space-separated string."""
        return " ".join(self.command)


class ExternalTool(ABC):
    """Abstract base class for wrapping external command-line tools.

    Subclasses must define:
        TOOL_NAME: Primary executable name (e.g., "blastp")
        build_command: Method to construct the command arguments

    An explicit executable path passed to the constructor takes precedence
    over the PATH lookup.

    Dependency injection:
        Use set_executable_resolver() to inject a custom resolver for testing.
    """

    TOOL_NAME: ClassVar[str]
    INSTALL_HINT: ClassVar[str] = ""

    # Seconds between cancellation/timeout checks while waiting
    POLL_INTERVAL: ClassVar[float] = 0.5
    # Seconds to wait after SIGTERM before SIGKILL
    TERMINATE_GRACE: ClassVar[float] = 5.0

    _executable_cache: ClassVar[dict[str, Path | None]] = {}
    _executable_resolver: ClassVar[Callable[[str], str | None]] = staticmethod(
        shutil.which
    )

    def __init__(self, executable: str | Path | None = None) -> None:
        self.executable = executable

    @classmethod
    def check_available(cls) -> bool:
        """Check if the tool is installed and available in PATH."""
        try:
            cls.get_executable()
            return True
        except ToolLaunchError:
            return False

    @classmethod
    def get_executable(cls, name: str | None = None) -> Path:
        """Find the tool executable in PATH.

        Args:
            name: Executable name to look up (defaults to TOOL_NAME).

        Raises:
            ToolLaunchError: If the tool cannot be found.
        """
        name = name or cls.TOOL_NAME
        if name in cls._executable_cache:
            cached = cls._executable_cache[name]
            if cached is not None:
                return cached
            raise ToolLaunchError(name, cls.INSTALL_HINT, "not found in PATH")

        exe_path = cls._executable_resolver(name)
        if exe_path:
            path = Path(exe_path)
            cls._executable_cache[name] = path
            return path

        cls._executable_cache[name] = None
        raise ToolLaunchError(name, cls.INSTALL_HINT, "not found in PATH")

    def resolve_executable(self) -> Path:
        """Executable for this instance: explicit path if given, else PATH lookup.

        Raises:
            ToolLaunchError: If the executable is missing or not executable.
        """
        if self.executable is None:
            return self.get_executable()

        candidate = Path(self.executable)
        if candidate.parent == Path("."):
            return self.get_executable(str(self.executable))
        if not candidate.is_file():
            raise ToolLaunchError(self.TOOL_NAME, self.INSTALL_HINT, f"{candidate} does not exist")
        if not os.access(candidate, os.X_OK):
            raise ToolLaunchError(self.TOOL_NAME, self.INSTALL_HINT, f"{candidate} is not executable")
        return candidate

    @classmethod
    def clear_cache(cls) -> None:
        """Clear the executable location cache."""
        cls._executable_cache.clear()

    @classmethod
    def set_executable_resolver(
        cls,
        resolver: Callable[[str], str | None],
    ) -> None:
        """Inject a custom executable resolver for testing.

        Example:
            ExternalTool.set_executable_resolver(lambda name: f"/usr/bin/{name}")
            # Run tests...
            ExternalTool.reset_executable_resolver()
        """
        cls._executable_resolver = staticmethod(resolver)
        cls.clear_cache()

    @classmethod
    def reset_executable_resolver(cls) -> None:
        """Reset the executable resolver to the default (shutil.which)."""
        cls._executable_resolver = staticmethod(shutil.which)
        cls.clear_cache()

    @abstractmethod
    def build_command(self, **kwargs: object) -> list[str]:
        """Build the command-line arguments for this tool.

        Returns:
            List of command-line arguments (including the executable).
        """
        ...

    def run(
        self,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        dry_run: bool = False,
        **kwargs: object,
    ) -> ToolResult:
        """Execute the tool and block until it exits.

        Standard error is merged into standard output. While waiting, the
        cancellation event and timeout are checked every POLL_INTERVAL
        seconds; on either, the process is terminated (then killed) before
        ToolInterruptedError is raised.

        Args:
            timeout: Maximum execution time in seconds (None for no limit).
            cancel_event: Set by another thread to stop the tool.
            dry_run: If True, return command without execution.
            **kwargs: Arguments passed to build_command().

        Raises:
            ToolLaunchError: If the tool cannot be started.
            ToolInterruptedError: On timeout, cancellation or KeyboardInterrupt.
        """
        command = self.build_command(**kwargs)
        command_tuple = tuple(command)

        if dry_run:
            return ToolResult(
                command=command_tuple,
                return_code=0,
                output="[dry-run] Command not executed",
                elapsed_seconds=0.0,
            )

        start_time = time.perf_counter()
        deadline = start_time + timeout if timeout is not None else None

        try:
            process = subprocess.Popen(
                command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
            )
        except OSError as e:
            raise ToolLaunchError(self.TOOL_NAME, self.INSTALL_HINT, str(e)) from e

        logger.debug("Started %s (pid %d): %s", self.TOOL_NAME, process.pid, " ".join(command))

        try:
            while True:
                try:
                    output, _ = process.communicate(timeout=self.POLL_INTERVAL)
                    break
                except subprocess.TimeoutExpired:
                    if cancel_event is not None and cancel_event.is_set():
                        reason = "cancelled"
                    elif deadline is not None and time.perf_counter() >= deadline:
                        reason = f"timed out after {timeout:.0f} seconds"
                    else:
                        continue
                    self._terminate(process)
                    raise ToolInterruptedError(self.TOOL_NAME, command, reason) from None
        except KeyboardInterrupt as e:
            self._terminate(process)
            raise ToolInterruptedError(self.TOOL_NAME, command, "keyboard interrupt") from e

        return ToolResult(
            command=command_tuple,
            return_code=process.returncode,
            output=output or "",
            elapsed_seconds=time.perf_counter() - start_time,
        )

    def run_or_raise(
        self,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
        dry_run: bool = False,
        **kwargs: object,
    ) -> ToolResult:
        """Execute the tool and raise an exception on failure.

        Same as run() but raises ToolExecutionError if exit code is non-zero.
        """
        result = self.run(
            timeout=timeout,
            cancel_event=cancel_event,
            dry_run=dry_run,
            **kwargs,
        )

        if not result.success and not dry_run:
            raise ToolExecutionError(
                self.TOOL_NAME,
                list(result.command),
                result.return_code,
                result.output,
            )

        return result

    def _terminate(self, process: subprocess.Popen) -> None:
        """Stop a running process: SIGTERM, then SIGKILL after a grace period."""
        if process.poll() is not None:
            return
        logger.warning("Terminating %s (pid %d)", self.TOOL_NAME, process.pid)
        process.terminate()
        try:
            process.communicate(timeout=self.TERMINATE_GRACE)
        except subprocess.TimeoutExpired:
            process.kill()
            process.communicate()
