"""
Search types for envseek.

The command handed to the search driver, its flags, the run summary and the
search-spec helper shared by the driver and the CLI.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from envseek.core.models import Bitness, CompilerFamily, InterpreterSelector, ReportEvent


class SearchDomain(str, Enum):
    """
    Search domains, in the order the driver visits them.

    PATH, LIBRARY and INCLUDE cover the environment variables of that name;
    LIBRARY and INCLUDE also cover the compilers' directories.
    """

    PATH = "path"
    LIBRARY = "lib"
    INCLUDE = "inc"
    ENV = "env"
    PYTHON = "python"
    LUA = "lua"


ALL_DOMAINS: frozenset[SearchDomain] = frozenset(
    {SearchDomain.PATH, SearchDomain.LIBRARY, SearchDomain.INCLUDE, SearchDomain.PYTHON, SearchDomain.LUA}
)


@dataclass(frozen=True)
class SearchFlags:
    """
    Options that shape a search.

    Attributes:
        case_sensitive: Name matching policy (None: platform default)
        recursive: Descend into sub-directories of each path entry
        show_unix_paths: Report paths with forward slashes
        use_cache: Read and update the persistent cache
        grep: Only report files containing this text
        grep_regex: Treat grep as a regular expression
        dir_mode: Report matching directories instead of files
        bitness: Ask compilers for 32 or 64-bit library directories
        debug: Debug verbosity level
        keep_temp: Keep temporary probe scripts
        no_prefix: Skip prefixed GNU toolchains
        excluded_families: Compiler families switched off
    """

    case_sensitive: Optional[bool] = None
    recursive: bool = False
    show_unix_paths: bool = False
    use_cache: bool = True
    grep: Optional[str] = None
    grep_regex: bool = False
    dir_mode: bool = False
    bitness: Bitness = Bitness.UNKNOWN
    debug: int = 0
    keep_temp: bool = False
    no_prefix: bool = False
    excluded_families: frozenset[CompilerFamily] = frozenset()


@dataclass
class SearchCommand:
    """One search request."""

    pattern: str
    domains: frozenset[SearchDomain] = ALL_DOMAINS
    interpreter_selector: InterpreterSelector = InterpreterSelector.DEFAULT
    flags: SearchFlags = field(default_factory=SearchFlags)
    env_vars: list[str] = field(default_factory=list)


@dataclass
class RunSummary:
    """What a search run produced."""

    pattern: str
    matches: int = 0
    lists_searched: int = 0
    sections: list[str] = field(default_factory=list)

    @property
    def found(self) -> bool:
        return self.matches > 0


ReportCallback = Callable[[ReportEvent], None]


def fix_filespec(pattern: str) -> tuple[str, str]:
    """
    Split a search spec into its sub-directory and file-name parts.

    A file-name part that does not end in ``*`` or ``$`` and has no
    extension gets ``.*`` appended, so ``ratio`` finds ``ratio.h`` (and,
    through the matcher's dotless rule, ``ratio`` itself).

    Returns:
        (subdir, file_spec); subdir is "" when the pattern has none
    """
    spec = pattern.strip()
    sep_idx = max(spec.rfind("/"), spec.rfind("\\"))
    subdir, fspec = "", spec
    if sep_idx >= 0:
        subdir, fspec = spec[:sep_idx], spec[sep_idx + 1:]
    if fspec and not fspec.endswith(("*", "$")) and "." not in fspec:
        fspec += ".*"
    return subdir, fspec
