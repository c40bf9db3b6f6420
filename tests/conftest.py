"""
Shared fixtures.

Every test runs with an empty PATH, no compiler or Lua variables and its
own config directory, so nothing from the developer's machine leaks in.
"""

import logging
import os
from pathlib import Path
from typing import Callable, Optional

import pytest

from envseek.core.cfg_file import read_cfg_file
from envseek.core.config import EnvseekConfig
from envseek.core.filesystem import LocalFilesystem
from envseek.core.ignore import IgnoreRegistry
from envseek.infrastructure.cache import PersistentCache
from envseek.infrastructure.process import EnvironmentStack, ProcessRunnerInterface
from envseek.probes.base import ProbeContext
from envseek.services.container import ServicesContainer
from tests.support.fakes import FakeProcessRunner

ISOLATED_VARS = (
    "INCLUDE",
    "LIB",
    "C_INCLUDE_PATH",
    "CPLUS_INCLUDE_PATH",
    "CPATH",
    "LIBRARY_PATH",
    "LUA_PATH",
    "LUA_CPATH",
    "WATCOM",
    "PYTHONHOME",
)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Empty PATH and a private config directory."""
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    monkeypatch.setenv("PATH", str(bin_dir))
    for name in ISOLATED_VARS:
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("ENVSEEK_"):
            monkeypatch.delenv(name, raising=False)

    config_home = tmp_path / "config-home"
    monkeypatch.setenv("XDG_CONFIG_HOME", str(config_home))
    monkeypatch.setenv("APPDATA", str(config_home))
    monkeypatch.setenv("ENVSEEK_CONFIG", str(tmp_path / "envseek.cfg"))

    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield bin_dir
    root.handlers[:] = handlers
    root.setLevel(level)


@pytest.fixture
def bin_dir(isolated_env) -> Path:
    return isolated_env


@pytest.fixture
def cache_file(tmp_path) -> Path:
    return tmp_path / "envseek.cache"


@pytest.fixture
def make_ctx(cache_file) -> Callable[..., ProbeContext]:
    """Factory for a ProbeContext over the real filesystem and a fake runner."""

    def _make(
        runner: Optional[ProcessRunnerInterface] = None,
        ignore: Optional[IgnoreRegistry] = None,
        cache: Optional[PersistentCache] = None,
        config: Optional[EnvseekConfig] = None,
        case_sensitive: Optional[bool] = True,
    ) -> ProbeContext:
        if cache is None:
            cache = PersistentCache(cache_file)
            cache.load()
        return ProbeContext(
            fs=LocalFilesystem(),
            runner=runner or FakeProcessRunner(),
            ignore=ignore or IgnoreRegistry(),
            cache=cache,
            config=config or EnvseekConfig(),
            env_stack=EnvironmentStack(),
            case_sensitive=case_sensitive,
        )

    return _make


@pytest.fixture
def make_services(tmp_path, cache_file) -> Callable[..., ServicesContainer]:
    """Factory for a ServicesContainer wired to a fake runner and a temp cache."""

    def _make(
        runner: Optional[ProcessRunnerInterface] = None,
        cfg_text: str = "",
        use_cache: bool = True,
    ) -> ServicesContainer:
        config_path = tmp_path / "envseek.cfg"
        if cfg_text:
            config_path.write_text(cfg_text, encoding="utf-8")
        config = EnvseekConfig()
        return ServicesContainer(
            config=config,
            config_path=config_path,
            fs=LocalFilesystem(),
            runner=runner or FakeProcessRunner(),
            ignore=IgnoreRegistry(),
            cache=PersistentCache(cache_file, enabled=use_cache),
            cfg_entries=read_cfg_file(config_path),
        )

    return _make
