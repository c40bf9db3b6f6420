"""
Embedded interpreter runtime.

An embedded runtime keeps one interpreter alive across several probe
scripts. The interpreter installs a ``catcher`` object as ``sys.stdout`` at
its top level; after each script the host reads ``catcher.value`` and the
interpreter calls ``catcher.reset()``.

ChildInterpreterRuntime backs the capability with a persistent child
process that speaks a length-framed protocol over its stdin/stdout pipes.
"""

import logging
import os
import queue
import subprocess
import threading
from abc import ABC, abstractmethod
from typing import IO, Optional

from envseek.core.errors import ProbeError, ProbeErrorKind

logger = logging.getLogger(__name__)

# Runs inside the interpreter; valid on Python 2 and 3
DRIVER_PROGRAM = r"""
import sys, traceback

class catch_stdout:
    def __init__(self):
        self.value = ''
    def write(self, txt):
        self.value += txt
    def flush(self):
        pass
    def reset(self):
        self.value = ''

_in = getattr(sys.stdin, 'buffer', sys.stdin)
_out = getattr(sys.__stdout__, 'buffer', sys.__stdout__)
catcher = catch_stdout()
sys.stdout = catcher

while True:
    _header = _in.readline()
    if not _header.strip():
        break
    _code = _in.read(int(_header)).decode('utf-8')
    try:
        exec(_code, globals())
    except SystemExit:
        pass
    except BaseException:
        catcher.write(traceback.format_exc())
    _data = catcher.value.encode('utf-8')
    catcher.reset()
    _out.write(str(len(_data)).encode('ascii') + b'\n')
    _out.write(_data)
    _out.flush()
"""


class EmbeddedRuntime(ABC):
    """Abstract in-process interpreter capability."""

    @abstractmethod
    def initialise(self, program_name: str, home: Optional[str] = None, timeout: float = 30.0) -> None:
        """
        Start the interpreter and install the stdout catcher.

        Args:
            program_name: Interpreter executable
            home: Value for the interpreter's home (``PYTHONHOME``), if any
            timeout: Seconds one script may run before the interpreter is killed

        Raises:
            ProbeError: SPAWN_FAILED if the interpreter cannot be started
        """
        pass

    @abstractmethod
    def run_script(self, code: str) -> str:
        """
        Execute code at the interpreter's top level.

        Returns:
            Everything the script wrote to stdout; a traceback text if it raised

        Raises:
            ProbeError: PROBE_CRASH if the interpreter died, SPAWN_FAILED if
                the script ran past the timeout
        """
        pass

    @abstractmethod
    def capture_stdout(self) -> str:
        """Return and clear the output captured by the last script."""
        pass

    @abstractmethod
    def finalise(self) -> None:
        """Shut the interpreter down; safe to call more than once."""
        pass

    @property
    @abstractmethod
    def is_live(self) -> bool:
        pass


class ChildInterpreterRuntime(EmbeddedRuntime):
    """
    EmbeddedRuntime backed by a persistent interpreter child process.

    A reader thread turns the child's framed replies into queue items, so
    run_script can wait for a reply with a deadline.
    """

    def __init__(self, shutdown_timeout: float = 5.0):
        self._proc: Optional[subprocess.Popen] = None
        self._reader: Optional[threading.Thread] = None
        self._replies: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._captured = ""
        self._program_name = ""
        self._timeout = 30.0
        self._shutdown_timeout = shutdown_timeout

    @property
    def is_live(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def initialise(self, program_name: str, home: Optional[str] = None, timeout: float = 30.0) -> None:
        if self.is_live:
            self.finalise()
        env = dict(os.environ)
        if home:
            env["PYTHONHOME"] = home
        env["PYTHONIOENCODING"] = "utf-8"
        try:
            self._proc = subprocess.Popen(
                [program_name, "-u", "-c", DRIVER_PROGRAM],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.DEVNULL,
                env=env,
            )
        except OSError as e:
            raise ProbeError(ProbeErrorKind.SPAWN_FAILED, f"{program_name}: {e}") from e
        self._program_name = program_name
        self._timeout = timeout
        self._replies = queue.Queue()
        assert self._proc.stdout is not None
        self._reader = threading.Thread(
            target=self._pump,
            args=(self._proc.stdout, self._replies),
            name=f"envseek-runtime-{self._proc.pid}",
            daemon=True,
        )
        self._reader.start()
        logger.debug(f"Embedded runtime started: {program_name} (pid {self._proc.pid})")

    @staticmethod
    def _read_exact(stream: IO[bytes], size: int) -> bytes:
        chunks = []
        remaining = size
        while remaining > 0:
            chunk = stream.read(remaining)
            if not chunk:
                break
            chunks.append(chunk)
            remaining -= len(chunk)
        return b"".join(chunks)

    @classmethod
    def _pump(cls, stream: IO[bytes], replies: "queue.Queue[Optional[bytes]]") -> None:
        """Queue each reply payload; None once the child has gone away."""
        try:
            while True:
                header = stream.readline()
                if not header.strip():
                    break
                replies.put(cls._read_exact(stream, int(header)))
        except (OSError, ValueError) as e:
            logger.debug(f"Embedded runtime reader stopped: {e}")
        replies.put(None)

    def run_script(self, code: str) -> str:
        if not self.is_live or self._proc is None:
            raise ProbeError(ProbeErrorKind.PROBE_CRASH, "embedded runtime is not initialised")
        assert self._proc.stdin is not None

        data = code.encode("utf-8")
        try:
            self._proc.stdin.write(f"{len(data)}\n".encode("ascii") + data)
            self._proc.stdin.flush()
        except OSError as e:
            self.finalise()
            raise ProbeError(ProbeErrorKind.PROBE_CRASH, f"{self._program_name}: {e}") from e

        try:
            payload = self._replies.get(timeout=self._timeout)
        except queue.Empty:
            logger.debug(f"Embedded runtime {self._program_name} timed out; killing it")
            self._kill()
            raise ProbeError(ProbeErrorKind.SPAWN_FAILED, f"timed out after {self._timeout:g}s") from None

        if payload is None:
            self.finalise()
            raise ProbeError(ProbeErrorKind.PROBE_CRASH, f"{self._program_name} exited")

        self._captured = payload.decode("utf-8", errors="replace")
        return self.capture_stdout()

    def capture_stdout(self) -> str:
        captured, self._captured = self._captured, ""
        return captured

    def _kill(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        proc.kill()
        proc.wait()
        self._close_pipes(proc)

    def _close_pipes(self, proc: subprocess.Popen) -> None:
        """Close both pipes once the reader has seen the child's end of stdout."""
        if proc.stdin is not None and not proc.stdin.closed:
            try:
                proc.stdin.close()
            except OSError as e:
                logger.debug(f"Error closing embedded runtime stdin: {e}")
        reader, self._reader = self._reader, None
        if reader is not None:
            reader.join(timeout=self._shutdown_timeout)
            if reader.is_alive():
                logger.debug(f"Embedded runtime reader for {self._program_name} is still blocked")
                return
        if proc.stdout is not None:
            proc.stdout.close()

    def finalise(self) -> None:
        proc, self._proc = self._proc, None
        if proc is None:
            return
        try:
            if proc.stdin is not None:
                proc.stdin.close()
            proc.wait(timeout=self._shutdown_timeout)
        except subprocess.TimeoutExpired:
            logger.warning(f"Embedded runtime {self._program_name} did not exit; killing it")
            proc.kill()
            proc.wait()
        except OSError as e:
            logger.debug(f"Error closing embedded runtime: {e}")
            proc.kill()
            proc.wait()
        finally:
            self._close_pipes(proc)
        logger.debug(f"Embedded runtime finalised: {self._program_name}")
