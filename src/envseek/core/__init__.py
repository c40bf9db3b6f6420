"""
Core Layer - path lists, glob matching, config and ignore rules, archives.
"""

from envseek.core.archive import ArchiveMember, ArchiveReader
from envseek.core.config import EnvseekConfig, load_config
from envseek.core.content_grep import ContentGrep, ContentGrepError, GrepMode
from envseek.core.errors import (
    ArchiveMalformedError,
    CacheError,
    ConfigMalformedError,
    EnvseekError,
    PatternSyntaxError,
    ProbeError,
    ProbeErrorKind,
)
from envseek.core.filesystem import FilesystemInterface, LocalFilesystem
from envseek.core.glob_matcher import GlobPattern, fnmatch
from envseek.core.ignore import IgnoreRegistry
from envseek.core.path_list import build_path_list

__all__ = [
    # Archives
    "ArchiveMember",
    "ArchiveReader",
    # Config
    "EnvseekConfig",
    "load_config",
    # Grep
    "ContentGrep",
    "ContentGrepError",
    "GrepMode",
    # Errors
    "ArchiveMalformedError",
    "CacheError",
    "ConfigMalformedError",
    "EnvseekError",
    "PatternSyntaxError",
    "ProbeError",
    "ProbeErrorKind",
    # Filesystem
    "FilesystemInterface",
    "LocalFilesystem",
    # Matching
    "GlobPattern",
    "fnmatch",
    "IgnoreRegistry",
    "build_path_list",
]
