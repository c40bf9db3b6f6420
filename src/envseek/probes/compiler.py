"""
Compiler probe.

Finds C/C++ toolchains on PATH and works out their include and library
search directories:

- GNU and LLVM based compilers are spawned and asked for their built-in
  search lists (``-v`` and ``-print-search-dirs``).
- MSVC, clang-cl and Intel library paths come from ``INCLUDE`` / ``LIB``.
- Borland reads ``<root>/bin/<name>.cfg``; Watcom derives its directories
  from ``%WATCOM%``.

Spawned results are stored in the ``[Compiler]`` cache section so a later
run with the same compilers on PATH does not spawn again.
"""

import logging
import os
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from envseek.core.errors import ProbeError, ProbeErrorKind
from envseek.core.models import (
    Bitness,
    CompilerFamily,
    CompilerRecord,
    PathList,
    ProbeState,
    default_case_sensitive,
    path_key,
)
from envseek.core.path_list import build_path_list
from envseek.core.path_utils import IS_WINDOWS, cygwin_to_windows, searchpath, split_env_var
from envseek.infrastructure.binary_info import detect_bitness
from envseek.probes.base import ProbeContext, ProbeResult, load_cached_dirs, path_list_cache_entries

logger = logging.getLogger(__name__)

CACHE_SECTION = "Compiler"
EXE_FORMAT = "compiler_exe_%d = %d,%d,%d,%s,%s,%s,%s"

DEFAULT_GCC_PREFIXES: tuple[str, ...] = (
    "",
    "x86_64-w64-mingw32-",
    "i386-mingw32-",
    "i686-w64-mingw32-",
    "avr-",
)

# Hidden from spawned compilers so only their built-in directories are reported
SUPPRESSED_ENV: list[str] = ["C_INCLUDE_PATH", "CPLUS_INCLUDE_PATH", "CPATH", "LIBRARY_PATH"]

INCLUDE_START = "#include <...> search starts here:"
INCLUDE_END = "End of search list."
LIBRARIES_PREFIX = "libraries: ="

_CYGWIN_MARKERS = ("/usr/", "/cygdrive/")
_FRAMEWORK_SUFFIX = " (framework directory)"


@dataclass(frozen=True)
class CompilerSpec:
    """One executable name to look for on PATH."""

    family: CompilerFamily
    name: str
    include_env: str
    library_env: str
    prefix: str = ""


def compiler_specs(gcc_prefixes: list[str] | tuple[str, ...] = DEFAULT_GCC_PREFIXES) -> list[CompilerSpec]:
    """All supported compiler names, in discovery order."""
    specs: list[CompilerSpec] = []
    for pfx in gcc_prefixes:
        specs.append(CompilerSpec(CompilerFamily.GNU_C, f"{pfx}gcc", "C_INCLUDE_PATH", "LIBRARY_PATH", pfx))
        specs.append(CompilerSpec(CompilerFamily.GNU_CXX, f"{pfx}g++", "CPLUS_INCLUDE_PATH", "LIBRARY_PATH", pfx))

    specs.append(CompilerSpec(CompilerFamily.MSVC, "cl", "INCLUDE", "LIB"))
    specs.append(CompilerSpec(CompilerFamily.CLANG, "clang", "INCLUDE", "LIB"))
    specs.append(CompilerSpec(CompilerFamily.CLANG, "clang-cl", "INCLUDE", "LIB"))
    specs.append(CompilerSpec(CompilerFamily.INTEL, "icx", "CPATH", "LIB"))
    specs.append(CompilerSpec(CompilerFamily.INTEL, "dpcpp", "CPATH", "LIB"))
    for name in ("bcc32", "bcc32c"):
        specs.append(CompilerSpec(CompilerFamily.BORLAND, name, "INCLUDE", "LIB"))
    for name in ("wcc386", "wpp386", "wcc", "wpp", "wccmps", "wccppc", "wccaxp", "wppaxp"):
        specs.append(CompilerSpec(CompilerFamily.WATCOM, name, "WATCOM", "LIB"))
    return specs


def _stem(record: CompilerRecord) -> str:
    return os.path.splitext(record.short_name)[0].lower()


def parse_include_output(lines: list[str]) -> list[str]:
    """Directories between the ``search starts here`` and ``End of search list`` lines."""
    dirs: list[str] = []
    inside = False
    for line in lines:
        if not inside:
            inside = line.startswith(INCLUDE_START)
            continue
        if line.startswith(INCLUDE_END):
            break
        path = line.strip()
        if path.endswith(_FRAMEWORK_SUFFIX):
            path = path[: -len(_FRAMEWORK_SUFFIX)]
        if path:
            dirs.append(path)
    return dirs


@dataclass
class _CachedCompiler:
    state: ProbeState
    include_dirs: list[str] = field(default_factory=list)
    include_ordinals: list[int] = field(default_factory=list)
    library_dirs: list[str] = field(default_factory=list)
    library_ordinals: list[int] = field(default_factory=list)


class CompilerProbe:
    """Discovers compilers and their include and library directory lists."""

    def __init__(
        self,
        ctx: ProbeContext,
        excluded: frozenset[CompilerFamily] = frozenset(),
        no_prefix: bool = False,
        bitness: Bitness = Bitness.UNKNOWN,
        windows_host: bool = IS_WINDOWS,
    ):
        """
        Args:
            ctx: Shared probe collaborators
            excluded: Families switched off on the command line
            no_prefix: Ignore prefixed GNU toolchains (``avr-gcc`` etc.)
            bitness: Ask GNU/clang for 32 or 64-bit library directories
            windows_host: Apply Cygwin path handling and ``;`` list separators
        """
        self.ctx = ctx
        self.excluded = excluded
        self.no_prefix = no_prefix
        self.bitness = bitness
        self.windows_host = windows_host
        self.records: list[CompilerRecord] = []
        self._discovered = False

    # Discovery

    def _gcc_prefixes(self) -> list[str]:
        return list(dict.fromkeys([*DEFAULT_GCC_PREFIXES, *self.ctx.config.compiler.gcc_prefixes]))

    def _is_ignored(self, spec: CompilerSpec, full_path: str) -> bool:
        if spec.family in self.excluded:
            return True
        if self.no_prefix and spec.prefix:
            return True
        return self.ctx.ignore.lookup("Compiler", full_path)

    def discover(self) -> list[CompilerRecord]:
        """
        Find every supported compiler on PATH.

        Records adopt the cached directory lists of the same executable.

        Returns:
            Records in discovery order (ignored ones included)
        """
        if self._discovered:
            return self.records

        cached = self._load_cached()
        per_family: Counter = Counter()
        seen: set[str] = set()
        case_sensitive = self._case_sensitive()

        for spec in compiler_specs(self._gcc_prefixes()):
            full_path = searchpath(spec.name)
            if full_path is None:
                continue
            key = path_key(full_path, case_sensitive)
            if key in seen:
                continue
            seen.add(key)

            n = per_family[spec.family]
            per_family[spec.family] += 1
            ordinal = spec.family.ordinal
            record = CompilerRecord(
                family=spec.family,
                short_name=os.path.basename(full_path),
                full_path=full_path,
                include_env=spec.include_env,
                library_env=spec.library_env,
                ignored=self._is_ignored(spec, full_path),
                bitness=detect_bitness(full_path),
                state=ProbeState.DISCOVERED,
                cache_id=str(ordinal) if n == 0 else f"{ordinal}-{n}",
            )

            hit = cached.get((spec.family, key))
            if hit is not None and not record.ignored:
                record.state = hit.state
                record.include_paths = self._path_list(record, hit.include_dirs, "include", hit.include_ordinals)
                record.library_paths = self._path_list(record, hit.library_dirs, "library", hit.library_ordinals)
                logger.debug(f"Using cached directories for {full_path}")

            logger.debug(
                f"Found {record.short_name} at {full_path}"
                + (" (ignored)" if record.ignored else "")
            )
            self.records.append(record)

        self._discovered = True
        self._sync_cache()
        return self.records

    def compiler_info(self) -> list[CompilerRecord]:
        """Every discovered record, for the ``--compilers`` listing."""
        return self.discover()

    # Cache

    def _case_sensitive(self) -> bool:
        cs = self.ctx.case_sensitive
        return default_case_sensitive() if cs is None else cs

    def _load_cached(self) -> dict[tuple[CompilerFamily, str], _CachedCompiler]:
        cache = self.ctx.cache
        result: dict[tuple[CompilerFamily, str], _CachedCompiler] = {}
        per_family: Counter = Counter()
        index = 0
        while True:
            fields = cache.getf(CACHE_SECTION, EXE_FORMAT, index)
            if not fields:
                break
            if len(fields) < 7:
                logger.debug(f"Malformed cache entry compiler_exe_{index}; dropping cached compilers")
                return {}
            index += 1
            try:
                family = CompilerFamily.from_ordinal(fields[0])
            except IndexError:
                continue
            n = per_family[family]
            per_family[family] += 1
            cache_id = str(family.ordinal) if n == 0 else f"{family.ordinal}-{n}"

            full_path = fields[6]
            if full_path == "-" or not self.ctx.fs.exists(full_path):
                logger.debug(f"Cached compiler '{full_path}' no longer exists")
                continue
            state = cache.get(CACHE_SECTION, f"compiler_state_{cache_id}")
            if state not in (ProbeState.PROBED.value, ProbeState.FAILED.value):
                continue
            inc_ordinals, inc_dirs = load_cached_dirs(cache, CACHE_SECTION, f"compiler_inc_{cache_id}_")
            lib_ordinals, lib_dirs = load_cached_dirs(cache, CACHE_SECTION, f"compiler_lib_{cache_id}_")
            result[(family, path_key(full_path, self._case_sensitive()))] = _CachedCompiler(
                state=ProbeState(state),
                include_dirs=inc_dirs,
                include_ordinals=inc_ordinals,
                library_dirs=lib_dirs,
                library_ordinals=lib_ordinals,
            )
        return result

    def _desired_cache(self) -> dict[str, str]:
        desired: dict[str, str] = {}
        for i, rec in enumerate(self.records):
            bits = int(rec.bitness.value) if rec.bitness is not Bitness.UNKNOWN else 0
            desired[f"compiler_exe_{i}"] = ",".join(
                [
                    str(rec.family.ordinal),
                    str(int(rec.ignored)),
                    str(bits),
                    rec.include_env,
                    rec.library_env,
                    rec.short_name,
                    rec.full_path or "-",
                ]
            )
        for rec in self.records:
            if not rec.family.spawns_probe or rec.state not in (ProbeState.PROBED, ProbeState.FAILED):
                continue
            desired[f"compiler_state_{rec.cache_id}"] = rec.state.value
            desired.update(path_list_cache_entries(f"compiler_inc_{rec.cache_id}_", rec.include_paths))
            desired.update(path_list_cache_entries(f"compiler_lib_{rec.cache_id}_", rec.library_paths))
        return desired

    def _sync_cache(self) -> None:
        cache = self.ctx.cache
        if not cache.enabled:
            return
        current = {
            k: cache.get(CACHE_SECTION, k)
            for k in cache.keys(CACHE_SECTION)
            if k.startswith("compiler_")
        }
        desired = self._desired_cache()
        if current == desired:
            return
        cache.delete_prefix(CACHE_SECTION, "compiler_")
        for key, value in desired.items():
            cache.put(CACHE_SECTION, key, value)

    # Probing

    def _path_list(
        self,
        record: CompilerRecord,
        dirs: list[str],
        what: str,
        ordinals: Optional[list[int]] = None,
    ) -> PathList:
        env = record.include_env if what == "include" else record.library_env
        return build_path_list(
            owner=record.display_name,
            raw_paths=dirs,
            fs=self.ctx.fs,
            case_sensitive=self._case_sensitive(),
            list_name=f"{record.short_name}:{env}",
            deduplicate=True,
            ordinals=ordinals,
        )

    def include_paths(self, record: CompilerRecord) -> PathList:
        self.probe(record)
        return record.include_paths or PathList(owner=record.display_name)

    def library_paths(self, record: CompilerRecord) -> PathList:
        self.probe(record)
        return record.library_paths or PathList(owner=record.display_name)

    def probe(self, record: CompilerRecord) -> None:
        """
        Fill in a record's directory lists.

        Ignored records are never spawned. A record that already has a
        result (from this run or the cache) is not probed again.
        """
        if record.ignored:
            return
        if record.state in (ProbeState.PROBED, ProbeState.FAILED) and record.include_paths is not None:
            return

        inc = self._include_dirs(record)
        lib = self._library_dirs(record)
        for result, what in ((inc, "include"), (lib, "library")):
            if not result.ok and result.error is not None:
                self._warn(record, what, result)

        record.include_paths = self._path_list(record, inc.paths, "include")
        record.library_paths = self._path_list(record, lib.paths, "library")
        record.state = ProbeState.PROBED if inc.ok and lib.ok else ProbeState.FAILED
        logger.debug(
            f"{record.short_name}: {len(record.include_paths)} include, "
            f"{len(record.library_paths)} library directories ({record.state.value})"
        )
        if record.family.spawns_probe:
            self._sync_cache()

    def _warn(self, record: CompilerRecord, what: str, result: ProbeResult) -> None:
        error = result.error
        assert error is not None
        if error.kind is ProbeErrorKind.MISSING_ENV_VAR:
            logger.warning(f"{record.short_name}: %{error.context}% is not defined; no {what} directories.")
        else:
            logger.warning(f"Calling {record.display_name} for its {what} directories failed: {error.context}")

    def _include_dirs(self, record: CompilerRecord) -> ProbeResult:
        family, stem = record.family, _stem(record)
        if family is CompilerFamily.WATCOM:
            return self._watcom_dirs(("h",), ("h", "nt"), ("lh",))
        if family is CompilerFamily.BORLAND:
            return self._borland_dirs(record, "-isystem @\\..\\", "-I")
        if family is CompilerFamily.MSVC or stem == "clang-cl":
            return self._env_dirs(record.include_env)

        args = ["-v", "-dM"]
        if stem == "dpcpp":
            args += ["-xc++", "-c", "-Tc"]
        elif family is CompilerFamily.INTEL:
            args += ["-xc", "-c", "-Tc"]
        else:
            args += ["-xc", "-c"]
        args += ["-", "-o", os.devnull]

        result = self._spawn(record, args)
        if not result.ok:
            return result
        dirs = self._cygwin_fixup(record, parse_include_output(result.paths))
        if family is CompilerFamily.GNU_CXX:
            dirs = self._add_cxx_dir(dirs)
        return ProbeResult.success(dirs)

    def _library_dirs(self, record: CompilerRecord) -> ProbeResult:
        family, stem = record.family, _stem(record)
        if family is CompilerFamily.WATCOM:
            return self._watcom_dirs(("lib386",), ("lib386", "nt"), ("lib386", "dos"))
        if family is CompilerFamily.BORLAND:
            return self._borland_dirs(record, "-L@\\..\\", "-L")
        if family is CompilerFamily.MSVC or stem in ("clang-cl", "icx"):
            return self._env_dirs(record.library_env)

        args: list[str] = []
        if family.is_gnu or stem == "clang":
            if self.bitness is Bitness.BITS_32:
                args.append("-m32")
            elif self.bitness is Bitness.BITS_64:
                args.append("-m64")
        args.append("-clang:print-search-dirs" if stem == "dpcpp" else "-print-search-dirs")

        result = self._spawn(record, args)
        if not result.ok:
            return result
        llvm = family in (CompilerFamily.CLANG, CompilerFamily.INTEL)
        return ProbeResult.success(self._parse_library_output(record, result.paths, llvm))

    def _spawn(self, record: CompilerRecord, args: list[str]) -> ProbeResult:
        """Run the compiler with the pollution variables unset; paths holds its output lines."""
        assert record.full_path is not None
        with self.ctx.env_stack.suppressed(SUPPRESSED_ENV):
            try:
                result = self.ctx.runner.spawn(record.full_path, args, timeout=self.ctx.timeout)
            except ProbeError as e:
                return ProbeResult.failure(ProbeErrorKind.SPAWN_FAILED, str(e))

        if result.timed_out:
            return ProbeResult.failure(ProbeErrorKind.SPAWN_FAILED, f"timed out after {self.ctx.timeout:g}s")
        if result.exit_code != 0:
            detail = result.last_error_line() or f"exit code {result.exit_code}"
            return ProbeResult.failure(ProbeErrorKind.SPAWN_FAILED, detail)
        return ProbeResult.success(result.all_lines)

    def _cygwin_root(self, record: CompilerRecord) -> Optional[str]:
        if not record.full_path:
            return None
        bin_dir = os.path.dirname(record.full_path.replace("\\", "/"))
        if bin_dir.lower().endswith("/bin"):
            return bin_dir[: -len("/bin")]
        return None

    def _cygwin_fixup(self, record: CompilerRecord, dirs: list[str]) -> list[str]:
        """Map Cygwin-style directories onto the Windows filesystem."""
        if not self.windows_host or not any(d.startswith(_CYGWIN_MARKERS) for d in dirs):
            return dirs
        root = self._cygwin_root(record)
        logger.debug(f"{record.short_name} looks like a Cygwin compiler (root: {root})")
        fixed = []
        for d in dirs:
            if d.startswith("/cygdrive/"):
                d = cygwin_to_windows(d)
            elif d.startswith("/") and root:
                d = root + d
            fixed.append(d)
        return fixed

    def _add_cxx_dir(self, dirs: list[str]) -> list[str]:
        for d in dirs:
            candidate = os.path.join(d, "c++")
            if self.ctx.fs.is_dir(candidate):
                return dirs + [candidate]
        return dirs

    def _parse_library_output(self, record: CompilerRecord, lines: list[str], llvm: bool) -> list[str]:
        dirs: list[str] = []
        for line in lines:
            if not line.startswith(LIBRARIES_PREFIX) or len(line) <= len(LIBRARIES_PREFIX):
                continue
            rest = line[len(LIBRARIES_PREFIX):].strip()
            cygwin = self.windows_host and rest.startswith(_CYGWIN_MARKERS)
            sep = ":" if (cygwin or not self.windows_host) else ";"
            tokens = [t.strip() for t in rest.split(sep) if t.strip()]
            if cygwin:
                tokens = self._cygwin_fixup(record, tokens)
            for tok in tokens:
                if llvm:
                    for extra in (os.path.join(tok, "lib", "windows"), os.path.join(tok, "..", "..")):
                        if self.ctx.fs.is_dir(extra):
                            dirs.append(extra)
                dirs.append(tok)
        return dirs

    def _env_dirs(self, env_name: str) -> ProbeResult:
        value = os.environ.get(env_name)
        if not value:
            return ProbeResult.failure(ProbeErrorKind.MISSING_ENV_VAR, env_name)
        return ProbeResult.success(split_env_var(env_name, value))

    def _watcom_dirs(self, *parts: tuple[str, ...]) -> ProbeResult:
        root = os.environ.get("WATCOM")
        if not root:
            return ProbeResult.failure(ProbeErrorKind.MISSING_ENV_VAR, "WATCOM")
        dirs = [self.ctx.fs.current_directory()]
        dirs += [os.path.join(root, *p) for p in parts[:2]]
        # The third directory only exists in newer distributions
        for p in parts[2:]:
            candidate = os.path.join(root, *p)
            if self.ctx.fs.is_dir(candidate):
                dirs.append(candidate)
        return ProbeResult.success(dirs)

    def _borland_dirs(self, record: CompilerRecord, rooted: str, plain: str) -> ProbeResult:
        """Parse ``<root>/bin/<name>.cfg`` for ``rooted`` (``@\\..\\x``) or ``plain`` list options."""
        assert record.full_path is not None
        root = os.path.dirname(os.path.dirname(record.full_path))
        cfg = os.path.join(root, "bin", f"{_stem(record)}.cfg")
        try:
            with open(cfg, encoding="utf-8", errors="replace") as f:
                lines = f.read().splitlines()
        except OSError:
            logger.debug(f"No Borland config at {cfg}")
            return ProbeResult.success([])

        dirs: list[str] = []
        for line in lines:
            line = line.strip()
            if line.lower().startswith(rooted.lower()):
                rel = line[len(rooted):].replace("\\", "/")
                dirs.append(os.path.join(root, *rel.split("/")))
            elif line.startswith(plain):
                dirs.extend(split_env_var(f"Borland {plain}", line[len(plain):].strip(), separator=";"))
        return ProbeResult.success(dirs)
