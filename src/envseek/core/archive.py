"""
Archive table-of-contents reader.

Lists the members of zip-format archives (``.zip``, ``.egg``, ``.whl``) that
interpreters put on their module search path. Only the central directory is
read; member contents are never decompressed.
"""

import logging
import time
import zipfile
from collections.abc import Iterator
from dataclasses import dataclass

from envseek.core.errors import ArchiveMalformedError
from envseek.core.glob_matcher import GlobPattern

logger = logging.getLogger(__name__)

ARCHIVE_EXTENSIONS: frozenset[str] = frozenset({".zip", ".egg", ".whl"})


@dataclass(frozen=True)
class ArchiveMember:
    """A file recorded inside an archive."""

    name: str
    size: int
    mtime: float

    @property
    def basename(self) -> str:
        return self.name.rsplit("/", 1)[-1]


def _zip_time(date_time: tuple[int, int, int, int, int, int]) -> float:
    try:
        return time.mktime((*date_time, 0, 0, -1))
    except (OverflowError, ValueError):
        return 0.0


class ArchiveReader:
    """Reads the central directory of zip-format archives."""

    @staticmethod
    def is_archive_name(path: str) -> bool:
        lowered = path.lower()
        return any(lowered.endswith(ext) for ext in ARCHIVE_EXTENSIONS)

    def read_members(self, archive_path: str) -> list[ArchiveMember]:
        """
        Return every file member of an archive.

        Raises:
            ArchiveMalformedError: If the central directory cannot be read
        """
        try:
            with zipfile.ZipFile(archive_path, "r") as zf:
                infos = zf.infolist()
        except (zipfile.BadZipFile, zipfile.LargeZipFile) as e:
            raise ArchiveMalformedError(f"Malformed archive {archive_path}: {e}") from e
        except OSError as e:
            raise ArchiveMalformedError(f"Cannot open archive {archive_path}: {e}") from e

        return [
            ArchiveMember(
                name=info.filename.replace("\\", "/"),
                size=info.file_size,
                mtime=_zip_time(info.date_time),
            )
            for info in infos
            if not info.is_dir()
        ]

    def members(self, archive_path: str) -> list[ArchiveMember]:
        """Like read_members, but a malformed archive logs a warning and is empty."""
        try:
            return self.read_members(archive_path)
        except ArchiveMalformedError as e:
            logger.warning(str(e))
            return []

    def list(self, archive_path: str, pattern: GlobPattern) -> Iterator[ArchiveMember]:
        """
        Yield the members whose name or basename matches a pattern.

        Args:
            archive_path: Path of the archive file
            pattern: Compiled glob pattern

        Yields:
            Matching ArchiveMember objects in central-directory order
        """
        for member in self.members(archive_path):
            if pattern.match(member.name) or pattern.match(member.basename):
                logger.debug(f"Archive match: {archive_path}!{member.name}")
                yield member
