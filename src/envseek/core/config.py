"""
Configuration module for envseek.

Default values are loaded from defaults.yaml. The user's ``envseek.cfg``
may override them with global ``section.key = value`` lines placed before
the first ``[Section]`` header, and ``ENVSEEK_<SECTION>_<KEY>`` environment
variables override both.
"""

import logging
import os
import sys
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Callable, Optional

import yaml

from envseek.core.cfg_file import CfgEntry, read_cfg_file

logger = logging.getLogger(__name__)

# Path to the default configuration file
_DEFAULTS_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

CONFIG_FILENAME = "envseek.cfg"
CACHE_FILENAME = "envseek.cache"

# Cache for default values
_defaults_cache: dict[str, Any] | None = None


def _load_defaults() -> dict[str, Any]:
    """Load default configuration values from defaults.yaml."""
    global _defaults_cache

    if _defaults_cache is not None:
        return _defaults_cache

    if not _DEFAULTS_CONFIG_PATH.exists():
        logger.warning(f"Defaults config not found: {_DEFAULTS_CONFIG_PATH}")
        _defaults_cache = {}
        return _defaults_cache

    try:
        content = _DEFAULTS_CONFIG_PATH.read_text(encoding="utf-8")
        _defaults_cache = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse defaults config: {e}")
        _defaults_cache = {}

    return _defaults_cache


def _get_default(section: str, key: str, fallback: Any = None) -> Any:
    """Get a default value from the defaults config."""
    defaults = _load_defaults()
    section_defaults = defaults.get(section, {}) or {}
    value = section_defaults.get(key, fallback)
    # Lists are copied so instances never share a mutable default
    return list(value) if isinstance(value, list) else value


def _parse_bool(value: str) -> bool:
    """Parse a string to boolean."""
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_list(value: str) -> list[str]:
    """Parse a comma-separated list; ``""`` items stay as empty strings."""
    return [item.strip().strip('"') for item in value.split(",")]


def config_dir() -> Path:
    """Directory holding envseek.cfg and the cache file."""
    if sys.platform == "win32":
        appdata = os.environ.get("APPDATA")
        if appdata:
            return Path(appdata)
        return Path.home()
    xdg = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg) if xdg else Path.home() / ".config"
    return base / "envseek"


def default_config_path() -> Path:
    """The user config file; ``ENVSEEK_CONFIG`` overrides the location."""
    override = os.environ.get("ENVSEEK_CONFIG")
    if override:
        return Path(override)
    return config_dir() / CONFIG_FILENAME


@dataclass
class CacheConfig:
    """Configuration for the persistent probe cache."""

    enable: bool = field(default_factory=lambda: _get_default("cache", "enable", True))
    filename: str = field(default_factory=lambda: _get_default("cache", "filename", ""))
    keep_prev: bool = field(default_factory=lambda: _get_default("cache", "keep_prev", True))

    def resolved_path(self) -> Path:
        """The cache file path, defaulting to envseek.cache in the config dir."""
        if self.filename:
            return Path(os.path.expandvars(os.path.expanduser(self.filename)))
        return config_dir() / CACHE_FILENAME


@dataclass
class ProbeConfig:
    """Configuration for compiler and interpreter probes."""

    timeout: float = field(default_factory=lambda: _get_default("probe", "timeout", 30.0))
    keep_temp: bool = field(default_factory=lambda: _get_default("probe", "keep_temp", False))


@dataclass
class GrepConfig:
    """Configuration for grep mode."""

    max_matches: int = field(default_factory=lambda: _get_default("grep", "max_matches", 5))


@dataclass
class CompilerConfig:
    """Configuration for compiler discovery."""

    gcc_prefixes: list[str] = field(
        default_factory=lambda: _get_default(
            "compiler",
            "gcc_prefixes",
            ["", "x86_64-w64-mingw32-", "i386-mingw32-", "i686-w64-mingw32-", "avr-"],
        )
    )


@dataclass
class LuaConfig:
    """Configuration for the Lua domain."""

    luajit: bool = field(default_factory=lambda: _get_default("lua", "luajit", False))


@dataclass
class MatcherConfig:
    """Configuration for the path-list matcher."""

    max_depth: int = field(default_factory=lambda: _get_default("matcher", "max_depth", 8))


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = field(default_factory=lambda: _get_default("logging", "level", "WARNING"))
    format: str = field(default_factory=lambda: _get_default("logging", "format", "%(message)s"))


# (section, key) -> converter for the typed fields settable from text
_FIELD_CONVERTERS: dict[tuple[str, str], Callable[[str], Any]] = {
    ("cache", "enable"): _parse_bool,
    ("cache", "filename"): str,
    ("cache", "keep_prev"): _parse_bool,
    ("probe", "timeout"): float,
    ("probe", "keep_temp"): _parse_bool,
    ("grep", "max_matches"): int,
    ("compiler", "gcc_prefixes"): _parse_list,
    ("lua", "luajit"): _parse_bool,
    ("matcher", "max_depth"): int,
    ("logging", "level"): str,
    ("logging", "format"): str,
}


@dataclass
class EnvseekConfig:
    """Main configuration class for envseek."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    probe: ProbeConfig = field(default_factory=ProbeConfig)
    grep: GrepConfig = field(default_factory=GrepConfig)
    compiler: CompilerConfig = field(default_factory=CompilerConfig)
    lua: LuaConfig = field(default_factory=LuaConfig)
    matcher: MatcherConfig = field(default_factory=MatcherConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def set_value(self, section: str, key: str, raw: str) -> bool:
        """
        Set one field from its text form.

        Returns:
            False if the key is unknown or the value does not convert
        """
        converter = _FIELD_CONVERTERS.get((section, key))
        if converter is None:
            return False
        try:
            value = converter(raw)
        except ValueError:
            logger.warning(f"Bad value for {section}.{key}: '{raw}'")
            return False
        setattr(getattr(self, section), key, value)
        return True

    def apply_cfg_entries(self, entries: list[CfgEntry]) -> "EnvseekConfig":
        """
        Apply the global ``section.key = value`` lines of envseek.cfg.

        Lines inside ``[Section]`` blocks belong to the ignore registry and
        are not looked at here.
        """
        for entry in entries:
            if entry.section is not None:
                continue
            section, _, key = entry.key.partition(".")
            if not key or not self.set_value(section.lower(), key.lower(), entry.value):
                logger.warning(f"line {entry.line_number}: unknown setting '{entry.key}'")
        return self

    def apply_env_overrides(self) -> "EnvseekConfig":
        """
        Apply environment variable overrides to the configuration.

        Environment variables follow the pattern: ENVSEEK_<SECTION>_<KEY>
        Examples:
            - ENVSEEK_CACHE_ENABLE
            - ENVSEEK_PROBE_TIMEOUT
            - ENVSEEK_COMPILER_GCC_PREFIXES
            - ENVSEEK_LOGGING_LEVEL

        Returns:
            Self with environment overrides applied
        """
        for section, key in _FIELD_CONVERTERS:
            env_var = f"ENVSEEK_{section.upper()}_{key.upper()}"
            value = os.environ.get(env_var)
            if value is not None:
                self.set_value(section, key, value)

        return self

    def to_dict(self) -> dict:
        """Convert configuration to a dictionary."""
        return asdict(self)

    def to_yaml(self) -> str:
        """Serialize configuration to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)


def load_config(
    config_path: Optional[Path | str] = None,
    apply_env: bool = True,
    entries: Optional[list[CfgEntry]] = None,
) -> EnvseekConfig:
    """
    Load configuration with the user file and environment overrides.

    Args:
        config_path: envseek.cfg to read; None uses default_config_path().
            A missing file is not an error.
        apply_env: Whether to apply environment variable overrides.
        entries: Already parsed lines of the file; read from config_path if None.

    Returns:
        EnvseekConfig instance
    """
    config = EnvseekConfig()
    path = Path(config_path) if config_path else default_config_path()
    config.apply_cfg_entries(entries if entries is not None else read_cfg_file(path))

    if apply_env:
        config.apply_env_overrides()

    return config
