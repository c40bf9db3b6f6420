"""
Filesystem access used by the matcher and the probes.

The core only talks to the filesystem through FilesystemInterface so tests
can swap in a fake tree.
"""

import logging
import os
import stat as stat_module
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Optional

from envseek.core.archive import ArchiveMember, ArchiveReader
from envseek.core.glob_matcher import GlobPattern
from envseek.core.models import EntryKind
from envseek.core.path_utils import canonicalise

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirEntryInfo:
    """One name returned by list_directory()."""

    name: str
    is_dir: bool
    size: int
    mtime: float


@dataclass(frozen=True)
class StatResult:
    kind: EntryKind
    is_dir: bool
    size: int
    mtime: float


class FilesystemInterface(ABC):
    """Abstract filesystem primitives."""

    @abstractmethod
    def list_directory(self, path: str) -> Iterator[DirEntryInfo]:
        """
        Iterate a directory in the order the filesystem returns names.

        Args:
            path: Directory to list

        Yields:
            DirEntryInfo for each name except ``.`` and ``..``
        """
        pass

    @abstractmethod
    def stat(self, path: str) -> Optional[StatResult]:
        """Return kind, size and mtime of a path, or None if it does not exist."""
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        pass

    @abstractmethod
    def current_directory(self) -> str:
        pass

    @abstractmethod
    def canonicalise(self, path: str) -> str:
        pass

    @abstractmethod
    def list_archive(self, path: str, pattern: GlobPattern) -> Iterator[ArchiveMember]:
        """Iterate the members of an archive that match a pattern."""
        pass

    def is_dir(self, path: str) -> bool:
        result = self.stat(path)
        return result is not None and result.is_dir

    def is_file(self, path: str) -> bool:
        result = self.stat(path)
        return result is not None and not result.is_dir


class LocalFilesystem(FilesystemInterface):
    """FilesystemInterface backed by the operating system."""

    def __init__(self, archive_reader: Optional[ArchiveReader] = None):
        self._archive_reader = archive_reader or ArchiveReader()

    def list_directory(self, path: str) -> Iterator[DirEntryInfo]:
        try:
            with os.scandir(path) as it:
                for entry in it:
                    try:
                        st = entry.stat()
                    except OSError as e:
                        logger.debug(f"Cannot stat {entry.path}: {e}")
                        continue
                    yield DirEntryInfo(
                        name=entry.name,
                        is_dir=stat_module.S_ISDIR(st.st_mode),
                        size=st.st_size,
                        mtime=st.st_mtime,
                    )
        except PermissionError as e:
            logger.warning(f"Permission denied accessing directory: {path} - {e}")
        except OSError as e:
            logger.debug(f"Error accessing directory: {path} - {e}")

    def stat(self, path: str) -> Optional[StatResult]:
        try:
            st = os.stat(path)
        except OSError:
            return None
        is_dir = stat_module.S_ISDIR(st.st_mode)
        if is_dir:
            kind = EntryKind.DIRECTORY
        elif ArchiveReader.is_archive_name(path):
            kind = EntryKind.ARCHIVE
        else:
            # A plain file on a search path behaves like a missing directory
            kind = EntryKind.MISSING
        return StatResult(kind=kind, is_dir=is_dir, size=st.st_size, mtime=st.st_mtime)

    def exists(self, path: str) -> bool:
        return os.path.exists(path)

    def current_directory(self) -> str:
        return canonicalise(os.getcwd())

    def canonicalise(self, path: str) -> str:
        return canonicalise(path, cwd=os.getcwd())

    def list_archive(self, path: str, pattern: GlobPattern) -> Iterator[ArchiveMember]:
        return self._archive_reader.list(path, pattern)
