"""
Infrastructure Layer - probe cache, child processes, embedded runtime, binary headers.
"""

from envseek.infrastructure.binary_info import detect_bitness, host_bitness
from envseek.infrastructure.cache import PersistentCache
from envseek.infrastructure.embedded import ChildInterpreterRuntime, EmbeddedRuntime
from envseek.infrastructure.process import (
    EnvironmentStack,
    ProcessResult,
    ProcessRunner,
    ProcessRunnerInterface,
)

__all__ = [
    "detect_bitness",
    "host_bitness",
    "PersistentCache",
    "ChildInterpreterRuntime",
    "EmbeddedRuntime",
    "EnvironmentStack",
    "ProcessResult",
    "ProcessRunner",
    "ProcessRunnerInterface",
]
