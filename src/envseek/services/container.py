"""
Services container for envseek.

Builds the collaborators a search run needs (configuration, filesystem,
process runner, ignore registry and cache) in one place so the CLI and the
tests wire the driver the same way.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from envseek.core.cfg_file import CfgEntry, read_cfg_file
from envseek.core.config import EnvseekConfig, default_config_path, load_config
from envseek.core.filesystem import FilesystemInterface, LocalFilesystem
from envseek.core.ignore import IgnoreRegistry
from envseek.infrastructure.cache import PersistentCache
from envseek.infrastructure.process import (
    EnvironmentStack,
    ProcessRunner,
    ProcessRunnerInterface,
)


@dataclass
class ServicesContainer:
    """
    Container holding the shared service instances of one run.

    Attributes:
        config: Application configuration
        config_path: The envseek.cfg the run was configured from
        fs: Filesystem access
        runner: Child-process access for the probes
        ignore: Ignore registry (filled from cfg_entries by the driver)
        cache: Persistent probe cache (loaded by the driver)
        env_stack: Push/pop stack for environment variables
        cfg_entries: Lines of envseek.cfg, parsed once for config and ignore rules
    """

    config: EnvseekConfig
    config_path: Optional[Path]
    fs: FilesystemInterface
    runner: ProcessRunnerInterface
    ignore: IgnoreRegistry
    cache: PersistentCache
    env_stack: EnvironmentStack = field(default_factory=EnvironmentStack)
    cfg_entries: list[CfgEntry] = field(default_factory=list)


def create_services(
    config_path: Optional[Path] = None,
    use_cache: bool = True,
    config: Optional[EnvseekConfig] = None,
    fs: Optional[FilesystemInterface] = None,
    runner: Optional[ProcessRunnerInterface] = None,
) -> ServicesContainer:
    """
    Create the services of one run.

    Args:
        config_path: envseek.cfg to use; None picks the default location
        use_cache: False disables the persistent cache for this run
        config: Pre-built configuration; loaded from config_path if None
        fs: Filesystem override (tests)
        runner: Process runner override (tests)

    Returns:
        ServicesContainer with every service constructed but nothing loaded
    """
    path = config_path if config_path is not None else default_config_path()
    entries = read_cfg_file(path)
    if config is None:
        config = load_config(path, entries=entries)

    cache = PersistentCache(
        config.cache.resolved_path(),
        enabled=use_cache and config.cache.enable,
        keep_prev=config.cache.keep_prev,
    )
    return ServicesContainer(
        config=config,
        config_path=path,
        fs=fs or LocalFilesystem(),
        runner=runner or ProcessRunner(),
        ignore=IgnoreRegistry(),
        cache=cache,
        cfg_entries=entries,
    )
