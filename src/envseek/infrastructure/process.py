"""
Child-process access for the probes.

Probes run compilers and interpreters through ProcessRunnerInterface so tests
can substitute canned output. EnvironmentStack implements the push/pop
discipline used to hide variables such as ``C_INCLUDE_PATH`` from a probe.
"""

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Optional

from envseek.core.errors import ProbeError, ProbeErrorKind

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0


@dataclass
class ProcessResult:
    """Outcome of one spawn."""

    exit_code: int
    stdout_lines: list[str] = field(default_factory=list)
    stderr_lines: list[str] = field(default_factory=list)
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def all_lines(self) -> list[str]:
        return self.stdout_lines + self.stderr_lines

    def last_error_line(self) -> str:
        """
        The most useful line for a failure warning.

        Prefers the text after ``error:`` on the last stderr line.
        """
        lines = [line for line in self.stderr_lines if line.strip()]
        if not lines:
            lines = [line for line in self.stdout_lines if line.strip()]
        if not lines:
            return ""
        last = lines[-1].strip()
        idx = last.find("error: ")
        return last[idx + len("error: "):] if idx >= 0 else last


class ProcessRunnerInterface(ABC):
    """Abstract interface for spawning probe processes."""

    @abstractmethod
    def spawn(
        self,
        executable: str,
        args: list[str],
        env_overrides: Optional[dict[str, Optional[str]]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> ProcessResult:
        """
        Run a program to completion and collect its output.

        Args:
            executable: Program to run
            args: Arguments, without the program name
            env_overrides: Variables to set (or, with a None value, remove)
                in the child only
            timeout: Wall-clock limit in seconds

        Returns:
            ProcessResult; a timeout sets ``timed_out`` after the child
            has been killed and reaped

        Raises:
            ProbeError: SPAWN_FAILED if the program cannot be started
        """
        pass


def _child_env(env_overrides: Optional[dict[str, Optional[str]]]) -> Optional[dict[str, str]]:
    if not env_overrides:
        return None
    env = dict(os.environ)
    for name, value in env_overrides.items():
        if value is None:
            env.pop(name, None)
        else:
            env[name] = value
    return env


def _lines(data: Optional[str]) -> list[str]:
    return data.splitlines() if data else []


class ProcessRunner(ProcessRunnerInterface):
    """ProcessRunnerInterface backed by subprocess; stdin is the null device."""

    def spawn(
        self,
        executable: str,
        args: list[str],
        env_overrides: Optional[dict[str, Optional[str]]] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> ProcessResult:
        cmd = [executable, *args]
        logger.debug(f"Spawning: {' '.join(cmd)}")
        try:
            # subprocess.run kills and waits for the child on timeout
            result = subprocess.run(
                cmd,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=_child_env(env_overrides),
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"'{executable}' timed out after {timeout:g}s")
            stdout = e.stdout.decode("utf-8", "replace") if isinstance(e.stdout, bytes) else e.stdout
            stderr = e.stderr.decode("utf-8", "replace") if isinstance(e.stderr, bytes) else e.stderr
            return ProcessResult(
                exit_code=-1,
                stdout_lines=_lines(stdout),
                stderr_lines=_lines(stderr),
                timed_out=True,
            )
        except OSError as e:
            raise ProbeError(ProbeErrorKind.SPAWN_FAILED, f"{executable}: {e}") from e

        return ProcessResult(
            exit_code=result.returncode,
            stdout_lines=_lines(result.stdout),
            stderr_lines=_lines(result.stderr),
        )


class EnvironmentStack:
    """
    Push/pop of process environment variables.

    Every pushed frame records the prior value of each name (or its absence)
    so pop() restores the environment exactly.
    """

    def __init__(self) -> None:
        self._frames: list[dict[str, Optional[str]]] = []

    def __len__(self) -> int:
        return len(self._frames)

    def push(self, names: list[str], value: Optional[str] = None) -> None:
        """Save the current values of names, then set them (None unsets)."""
        frame: dict[str, Optional[str]] = {}
        for name in names:
            if name in frame:
                continue
            frame[name] = os.environ.get(name)
            if value is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = value
        self._frames.append(frame)
        logger.debug(f"env push: {', '.join(frame)}")

    def pop(self) -> None:
        """Restore the most recent frame."""
        frame = self._frames.pop()
        for name, previous in frame.items():
            if previous is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = previous
        logger.debug(f"env pop: {', '.join(frame)}")

    @contextmanager
    def suppressed(self, names: list[str]) -> Iterator[None]:
        """Unset names for the duration of the block, restoring them even on error."""
        self.push(names)
        try:
            yield
        finally:
            self.pop()
