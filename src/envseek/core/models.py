"""
Data models for envseek.

Path lists, compiler and interpreter records, and the events handed to the
reporting callback.
"""

import sys
from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Union


def default_case_sensitive() -> bool:
    """Filesystems on Windows and macOS are case-insensitive by default."""
    return sys.platform not in ("win32", "cygwin", "darwin")


class EntryKind(str, Enum):
    """What a path-list component points at."""

    DIRECTORY = "directory"
    ARCHIVE = "archive"
    MISSING = "missing"


class MatchKind(str, Enum):
    """What a match record names."""

    FILE = "file"
    DIRECTORY = "directory"
    ARCHIVE_ENTRY = "archive-entry"


class Bitness(str, Enum):
    """Word size of an executable or shared library."""

    BITS_32 = "32"
    BITS_64 = "64"
    UNKNOWN = "unknown"

    @classmethod
    def from_value(cls, value: Union[str, int, None]) -> "Bitness":
        for member in cls:
            if str(value) == member.value:
                return member
        return cls.UNKNOWN


@dataclass(frozen=True)
class PathOrigin:
    """The list a path entry came from and its ordinal in that list."""

    list_name: str
    ordinal: int

    def __str__(self) -> str:
        return f"{self.list_name}[{self.ordinal}]"


@dataclass
class PathEntry:
    """
    One component of a search path.

    Attributes:
        kind: Directory, archive or missing
        raw_path: The component exactly as received from its source
        canonical_path: Absolute, normalised form used for comparisons and reports
        origin: Source list name and ordinal
        is_cwd: True if canonical_path is the current directory
        is_duplicate_of: Ordinal of an earlier entry with the same canonical path
    """

    kind: EntryKind
    raw_path: str
    canonical_path: str
    origin: PathOrigin
    is_cwd: bool = False
    is_duplicate_of: Optional[int] = None

    @property
    def exists(self) -> bool:
        return self.kind is not EntryKind.MISSING


def path_key(path: str, case_sensitive: bool) -> str:
    """Comparison key for a canonical path."""
    key = path.replace("\\", "/")
    if len(key) > 1 and key.endswith("/") and not key.endswith(":/"):
        key = key.rstrip("/") or "/"
    return key if case_sensitive else key.casefold()


@dataclass
class PathList:
    """
    Ordered search path owned by a compiler, an interpreter or an env-var.

    After deduplicate() no two entries share a canonical path.
    """

    owner: str
    entries: list[PathEntry] = field(default_factory=list)
    case_sensitive: Optional[bool] = None

    def __iter__(self) -> Iterator[PathEntry]:
        return iter(self.entries)

    def __len__(self) -> int:
        return len(self.entries)

    def __getitem__(self, index: int) -> PathEntry:
        return self.entries[index]

    @property
    def canonical_paths(self) -> list[str]:
        return [e.canonical_path for e in self.entries]

    def append(self, entry: PathEntry) -> None:
        self.entries.append(entry)

    def effective_case_sensitive(self) -> bool:
        if self.case_sensitive is None:
            return default_case_sensitive()
        return self.case_sensitive

    def mark_duplicates(self) -> int:
        """
        Mark every entry whose canonical path already appeared earlier.

        Returns:
            Number of entries marked as duplicates
        """
        case_sensitive = self.effective_case_sensitive()
        first_seen: dict[str, int] = {}
        duplicates = 0
        for i, entry in enumerate(self.entries):
            key = path_key(entry.canonical_path, case_sensitive)
            if key in first_seen:
                entry.is_duplicate_of = first_seen[key]
                duplicates += 1
            else:
                entry.is_duplicate_of = None
                first_seen[key] = i
        return duplicates

    def compact(self) -> None:
        """Stable removal of entries marked as duplicates."""
        self.entries = [e for e in self.entries if e.is_duplicate_of is None]

    def deduplicate(self) -> int:
        duplicates = self.mark_duplicates()
        self.compact()
        return duplicates


class CompilerFamily(str, Enum):
    """Supported C/C++ toolchain families, in cache-ordinal order."""

    GNU_C = "gcc"
    GNU_CXX = "g++"
    MSVC = "msvc"
    CLANG = "clang"
    INTEL = "intel"
    BORLAND = "borland"
    WATCOM = "watcom"

    @property
    def ordinal(self) -> int:
        return list(CompilerFamily).index(self)

    @classmethod
    def from_ordinal(cls, ordinal: int) -> "CompilerFamily":
        return list(cls)[ordinal]

    @property
    def is_gnu(self) -> bool:
        return self in (CompilerFamily.GNU_C, CompilerFamily.GNU_CXX)

    @property
    def spawns_probe(self) -> bool:
        """GNU and LLVM based compilers are asked for their paths directly."""
        return self in (
            CompilerFamily.GNU_C,
            CompilerFamily.GNU_CXX,
            CompilerFamily.CLANG,
            CompilerFamily.INTEL,
        )


class ProbeState(str, Enum):
    """Life cycle of a compiler record."""

    UNKNOWN = "unknown"
    DISCOVERED = "discovered"
    PROBED = "probed"
    FAILED = "failed"


@dataclass
class CompilerRecord:
    """A toolchain found (or looked for) on PATH."""

    family: CompilerFamily
    short_name: str
    full_path: Optional[str] = None
    include_env: str = "INCLUDE"
    library_env: str = "LIB"
    ignored: bool = False
    bitness: Bitness = Bitness.UNKNOWN
    include_paths: Optional[PathList] = None
    library_paths: Optional[PathList] = None
    state: ProbeState = ProbeState.UNKNOWN
    cache_id: str = ""

    @property
    def display_name(self) -> str:
        return self.full_path or self.short_name

    @property
    def is_cxx(self) -> bool:
        return self.family is CompilerFamily.GNU_CXX or self.short_name.startswith("dpcpp")


class InterpreterVariant(str, Enum):
    """Interpreter flavours, one tag per flavour and major version."""

    PYTHON2 = "py2"
    PYTHON3 = "py3"
    PYPY = "pypy"
    IRONPYTHON2 = "ipy2"
    IRONPYTHON3 = "ipy3"
    JYTHON = "jython"
    LUA = "lua"
    LUAJIT = "luajit"

    @property
    def family(self) -> str:
        return "lua" if self in (InterpreterVariant.LUA, InterpreterVariant.LUAJIT) else "python"

    @property
    def embeddable(self) -> bool:
        """Only CPython flavours support in-process invocation."""
        return self in (InterpreterVariant.PYTHON2, InterpreterVariant.PYTHON3)


class InterpreterSelector(str, Enum):
    """Which interpreters a search covers."""

    DEFAULT = "default"
    ALL = "all"
    PY2 = "py2"
    PY3 = "py3"
    PYPY = "pypy"
    IRONPYTHON = "ipy"
    JYTHON = "jython"


Version = tuple[int, int, int]


@dataclass
class ModuleRecord:
    """One installed distribution reported by an interpreter."""

    name: str
    version: str
    location: str
    metadata_path: Optional[str] = None
    is_archive: bool = False


@dataclass
class InterpreterRecord:
    """A script interpreter found on PATH and what it reported about itself."""

    variant: InterpreterVariant
    executable: Optional[str] = None
    runtime_library: Optional[str] = None
    version: Optional[Version] = None
    bitness: Bitness = Bitness.UNKNOWN
    is_default: bool = False
    is_embeddable: bool = False
    home_dir: Optional[str] = None
    user_site_dir: Optional[str] = None
    module_search_path: Optional[PathList] = None
    installed_modules: list[ModuleRecord] = field(default_factory=list)
    probe_failed: bool = False

    @property
    def version_str(self) -> str:
        if self.version is None:
            return "?"
        return ".".join(str(v) for v in self.version)

    @property
    def display_name(self) -> str:
        return self.executable or self.variant.value


@dataclass(frozen=True)
class ContentMatch:
    """First content hit in a file when grep mode is on."""

    line_number: int
    line: str
    matched: str
    total_hits: int = 1


@dataclass(frozen=True)
class MatchRecord:
    """
    A single search hit handed to the reporting callback.

    For archive members, path is "<archive>!<name-inside>".
    """

    path: str
    size: int
    mtime: float
    kind: MatchKind
    origin: str
    content_match: Optional[ContentMatch] = None


@dataclass(frozen=True)
class SectionHeader:
    """Separates the matches of one path list from the next."""

    title: str


ReportEvent = Union[SectionHeader, MatchRecord]


@dataclass(frozen=True)
class IgnoreRule:
    """A section-scoped ignore pattern from the config file."""

    section: str
    pattern: str

    @property
    def anchored(self) -> bool:
        """Rules naming a full path compare against full paths only."""
        p = self.pattern
        return p.startswith(("/", "\\")) or (len(p) > 2 and p[1] == ":" and p[2] in "/\\")
