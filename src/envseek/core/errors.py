"""
Exception types for envseek.

Only PatternSyntaxError aborts a run. The other kinds are raised inside a
component and folded into result values (or logged) by its caller.
"""

from enum import Enum


class EnvseekError(Exception):
    """Base exception for envseek errors."""

    pass


class PatternSyntaxError(EnvseekError):
    """The search or ignore pattern is not a well-formed glob."""

    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Bad pattern '{pattern}': {reason}")


class ConfigMalformedError(EnvseekError):
    """A line in a config or cache file does not parse."""

    def __init__(self, path: str, line_number: int, line: str):
        self.path = path
        self.line_number = line_number
        self.line = line
        super().__init__(f"{path}({line_number}): cannot parse '{line}'")


class ArchiveMalformedError(EnvseekError):
    """The archive reader rejected a file."""

    pass


class CacheError(EnvseekError):
    """The cache file could not be read or written."""

    pass


class ProbeErrorKind(str, Enum):
    """Recoverable failures of a compiler or interpreter probe."""

    SPAWN_FAILED = "spawn-failed"
    PROBE_CRASH = "probe-crash"
    MISSING_ENV_VAR = "missing-env-var"
    HOST_MISMATCH = "host-mismatch"


class ProbeError(EnvseekError):
    """
    A probe could not produce its path list.

    Attributes:
        kind: Which recoverable failure happened
        context: Short human-readable detail (stderr line, crash text, env name)
    """

    def __init__(self, kind: ProbeErrorKind, context: str = ""):
        self.kind = kind
        self.context = context
        message = kind.value if not context else f"{kind.value}: {context}"
        super().__init__(message)
