"""
Path-list matcher.

Walks the entries of a PathList in order and reports every file (or
directory, in dir mode) whose name matches the search pattern. Archive
entries are searched through the archive reader.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Optional

from envseek.core.content_grep import ContentGrep
from envseek.core.filesystem import DirEntryInfo, FilesystemInterface
from envseek.core.glob_matcher import GlobPattern
from envseek.core.ignore import IgnoreRegistry
from envseek.core.models import (
    EntryKind,
    MatchKind,
    MatchRecord,
    PathEntry,
    PathList,
    path_key,
)
from envseek.core.path_utils import join_path

logger = logging.getLogger(__name__)


@dataclass
class MatchOptions:
    """
    How a path list is searched.

    Attributes:
        pattern: Compiled pattern for the file-name part of the search spec
        subdir: Sub-directory part of the search spec (``sys`` for ``sys/stat.h``)
        recursive: Descend into sub-directories
        max_depth: Deepest level visited below each entry when recursive
        dir_mode: Report matching directories instead of files
        grep: Content filter; files without a hit are dropped
        name_filter: Extra pattern every reported file must also match
        ignore_section: Ignore-registry section applied to entries and names
    """

    pattern: GlobPattern
    subdir: str = ""
    recursive: bool = False
    max_depth: int = 8
    dir_mode: bool = False
    grep: Optional[ContentGrep] = None
    name_filter: Optional[GlobPattern] = None
    ignore_section: Optional[str] = None


class PathListMatcher:
    """Matches a pattern against the directories and archives of a PathList."""

    def __init__(self, fs: FilesystemInterface, ignore: IgnoreRegistry):
        self.fs = fs
        self.ignore = ignore
        self._missing_logged: set[str] = set()

    def _ignored(self, options: MatchOptions, value: str) -> bool:
        return bool(options.ignore_section) and self.ignore.lookup(options.ignore_section, value)

    def match(self, plist: PathList, options: MatchOptions) -> Iterator[MatchRecord]:
        """
        Search every entry of a path list, in list order.

        Args:
            plist: The path list to search
            options: Pattern and search flags

        Yields:
            MatchRecord objects in list order, then filesystem order
        """
        for entry in plist:
            if self._ignored(options, entry.canonical_path):
                continue
            if entry.kind is EntryKind.MISSING:
                key = path_key(entry.canonical_path, plist.effective_case_sensitive())
                if key not in self._missing_logged:
                    self._missing_logged.add(key)
                    logger.debug(f"{entry.origin}: skipping missing '{entry.canonical_path}'")
                continue
            if entry.kind is EntryKind.ARCHIVE:
                yield from self._match_archive(entry, options)
                continue

            start = join_path(entry.canonical_path, options.subdir) if options.subdir else entry.canonical_path
            visited: set[str] = set()
            yield from self._scan_directory(start, entry, options, 0, visited)

    def _name_matches(self, info: DirEntryInfo, options: MatchOptions) -> bool:
        if options.pattern.match(info.name):
            return True
        # A dotless file also matches a pattern that starts with its name ("ratio.*")
        if info.is_dir or options.dir_mode or "." in info.name:
            return False
        text = options.pattern.pattern
        return text.lower().startswith(info.name.lower() + ".")

    def _scan_directory(
        self,
        directory: str,
        entry: PathEntry,
        options: MatchOptions,
        depth: int,
        visited: set[str],
    ) -> Iterator[MatchRecord]:
        """
        Report the matches of one directory, then recurse when asked.

        Sub-directories are visited after the directory's own matches, in
        the order the filesystem lists them.
        """
        key = path_key(directory, True)
        if key in visited:
            return
        visited.add(key)

        subdirs: list[str] = []
        for info in self.fs.list_directory(directory):
            if info.name in (".", ".."):
                continue
            full_path = join_path(directory, info.name)
            if self._ignored(options, full_path):
                continue

            if info.is_dir and options.recursive and depth < options.max_depth:
                subdirs.append(full_path)

            if not self._name_matches(info, options):
                continue
            if info.is_dir != options.dir_mode:
                continue

            record = self._file_record(full_path, info, entry, options)
            if record is not None:
                yield record

        for subdir in subdirs:
            yield from self._scan_directory(subdir, entry, options, depth + 1, visited)

    def _file_record(
        self,
        full_path: str,
        info: DirEntryInfo,
        entry: PathEntry,
        options: MatchOptions,
    ) -> Optional[MatchRecord]:
        if info.is_dir:
            return MatchRecord(
                path=full_path,
                size=0,
                mtime=info.mtime,
                kind=MatchKind.DIRECTORY,
                origin=str(entry.origin),
            )

        if options.name_filter is not None and not options.name_filter.match(info.name):
            return None

        content = None
        if options.grep is not None:
            content = options.grep.search_file(full_path)
            if content is None:
                return None

        return MatchRecord(
            path=full_path,
            size=info.size,
            mtime=info.mtime,
            kind=MatchKind.FILE,
            origin=str(entry.origin),
            content_match=content,
        )

    def _match_archive(self, entry: PathEntry, options: MatchOptions) -> Iterator[MatchRecord]:
        if options.dir_mode:
            return
        if options.grep is not None:
            logger.debug(f"Not searching archive contents in grep mode: {entry.canonical_path}")
            return

        pattern = options.pattern
        if options.subdir:
            subdir = options.subdir.replace("\\", "/").strip("/")
            pattern = GlobPattern.compile(
                f"{subdir}/{pattern.pattern}",
                case_sensitive=pattern.case_sensitive,
                path_mode=True,
            )

        for member in self.fs.list_archive(entry.canonical_path, pattern):
            if options.subdir and not pattern.match(member.name):
                continue
            if options.name_filter is not None and not options.name_filter.match(member.basename):
                continue
            yield MatchRecord(
                path=f"{entry.canonical_path}!{member.name}",
                size=member.size,
                mtime=member.mtime,
                kind=MatchKind.ARCHIVE_ENTRY,
                origin=str(entry.origin),
            )
