"""
Shared pieces of the compiler, interpreter and Lua probes.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from envseek.core.config import EnvseekConfig
from envseek.core.errors import ProbeError, ProbeErrorKind
from envseek.core.filesystem import FilesystemInterface
from envseek.core.ignore import IgnoreRegistry
from envseek.core.models import PathList
from envseek.infrastructure.cache import PersistentCache
from envseek.infrastructure.process import EnvironmentStack, ProcessRunnerInterface

logger = logging.getLogger(__name__)


@dataclass
class ProbeResult:
    """
    Outcome of asking a tool for its directories.

    Probes return this instead of raising; a failed result carries the
    ProbeError describing why, and ``paths`` is empty.
    """

    ok: bool
    paths: list[str] = field(default_factory=list)
    error: Optional[ProbeError] = None

    @classmethod
    def success(cls, paths: list[str]) -> "ProbeResult":
        return cls(ok=True, paths=paths)

    @classmethod
    def failure(cls, kind: ProbeErrorKind, context: str = "") -> "ProbeResult":
        return cls(ok=False, error=ProbeError(kind, context))


@dataclass
class ProbeContext:
    """Collaborators every probe needs."""

    fs: FilesystemInterface
    runner: ProcessRunnerInterface
    ignore: IgnoreRegistry
    cache: PersistentCache
    config: EnvseekConfig
    env_stack: EnvironmentStack = field(default_factory=EnvironmentStack)
    case_sensitive: Optional[bool] = None
    keep_temp: bool = False

    @property
    def timeout(self) -> float:
        return self.config.probe.timeout


def path_list_cache_entries(prefix: str, plist: Optional[PathList]) -> dict[str, str]:
    """
    Cache entries for a deduplicated PathList.

    Each surviving entry is stored as ``<prefix><j> = <ordinal>,<path>`` so a
    list rebuilt from the cache keeps the origins of the probed one.
    """
    if plist is None:
        return {}
    return {f"{prefix}{j}": f"{e.origin.ordinal},{e.canonical_path}" for j, e in enumerate(plist)}


def load_cached_dirs(cache: PersistentCache, section: str, prefix: str) -> tuple[list[int], list[str]]:
    """Read back what path_list_cache_entries stored: origin ordinals and paths."""
    ordinals: list[int] = []
    dirs: list[str] = []
    index = 0
    while True:
        fields = cache.getf(section, f"{prefix}%d = %u,%s", index)
        if not fields:
            break
        if len(fields) < 2:
            logger.debug(f"Malformed cache entry {prefix}{index}")
        else:
            ordinals.append(fields[0])
            dirs.append(fields[1])
        index += 1
    return ordinals, dirs
