"""
Interpreter probe.

Finds Python flavours on PATH and asks each one for its version, its
module search path (``sys.path``), its home and user-site directories and
its installed distributions.

Two modes are used:

- External mode spawns ``<exe> -c <program>`` once per question.
- Embedded mode keeps one interpreter alive (EmbeddedRuntime) and runs all
  programs in it. It requires an embeddable CPython whose bitness equals
  the host's; anything else falls back to external mode.
"""

import logging
import os
import re
import tempfile
from dataclasses import dataclass
from typing import Callable, Optional

from envseek.core.archive import ArchiveReader
from envseek.core.errors import ProbeError, ProbeErrorKind
from envseek.core.models import (
    Bitness,
    InterpreterRecord,
    InterpreterSelector,
    InterpreterVariant,
    ModuleRecord,
    PathList,
    default_case_sensitive,
    path_key,
)
from envseek.core.path_list import build_path_list
from envseek.core.path_utils import IS_WINDOWS, searchpath
from envseek.infrastructure.binary_info import detect_bitness, host_bitness
from envseek.infrastructure.embedded import ChildInterpreterRuntime, EmbeddedRuntime
from envseek.probes.base import ProbeContext, ProbeResult, load_cached_dirs, path_list_cache_entries

logger = logging.getLogger(__name__)

CACHE_SECTION = "Python"
EXE_FORMAT = "python_exe_%d = %s,%d,%d,%d,%d,%d,%s"

VERSION_PROGRAM = "import sys\nprint(sys.version_info[:3])\n"

SYS_PATH_PROGRAM = "import sys\nfor p in sys.path:\n    print(p)\n"

HOME_PROGRAM = """\
import sys
print(sys.prefix)
try:
    import site
    print(site.getusersitepackages())
except Exception:
    print('')
"""

MODULES_PROGRAM = """\
try:
    from importlib import metadata
except ImportError:
    metadata = None

if metadata is not None:
    for d in metadata.distributions():
        meta = getattr(d, '_path', None)
        print('%s;%s;%s;%s' % (d.metadata['Name'], d.version, d.locate_file(''), meta or ''))
else:
    try:
        import pkg_resources
        for d in pkg_resources.working_set:
            print('%s;%s;%s;%s' % (d.project_name, d.version, d.location, getattr(d, 'egg_info', '') or ''))
    except ImportError:
        pass
"""

_VERSION_RE = re.compile(r"\(\s*(\d+)\s*,\s*(\d+)\s*,\s*(\d+)")
_CRASH_MARKERS = ("Traceback (", "ImportError:")


@dataclass(frozen=True)
class InterpreterSpec:
    """Executable names for one interpreter flavour."""

    key: str
    names: tuple[str, ...]


INTERPRETER_SPECS: tuple[InterpreterSpec, ...] = (
    InterpreterSpec("python3", ("python3", "python")),
    InterpreterSpec("python2", ("python2",)),
    InterpreterSpec("pypy", ("pypy3", "pypy")),
    InterpreterSpec("ironpython", ("ipy", "ipy64")),
    InterpreterSpec("jython", ("jython",)),
)

_SELECTOR_VARIANTS: dict[InterpreterSelector, tuple[InterpreterVariant, ...]] = {
    InterpreterSelector.PY2: (InterpreterVariant.PYTHON2,),
    InterpreterSelector.PY3: (InterpreterVariant.PYTHON3,),
    InterpreterSelector.PYPY: (InterpreterVariant.PYPY,),
    InterpreterSelector.IRONPYTHON: (InterpreterVariant.IRONPYTHON2, InterpreterVariant.IRONPYTHON3),
    InterpreterSelector.JYTHON: (InterpreterVariant.JYTHON,),
}


def parse_version(text: str) -> Optional[tuple[int, int, int]]:
    """Parse ``(3, 11, 4)`` style output."""
    m = _VERSION_RE.search(text)
    if not m:
        return None
    return int(m.group(1)), int(m.group(2)), int(m.group(3))


def variant_for(spec_key: str, version: Optional[tuple[int, int, int]]) -> InterpreterVariant:
    """Map a flavour and its reported version onto a variant tag."""
    major = version[0] if version else None
    if spec_key == "python3":
        return InterpreterVariant.PYTHON2 if major == 2 else InterpreterVariant.PYTHON3
    if spec_key == "python2":
        return InterpreterVariant.PYTHON2
    if spec_key == "pypy":
        return InterpreterVariant.PYPY
    if spec_key == "ironpython":
        return InterpreterVariant.IRONPYTHON3 if major == 3 else InterpreterVariant.IRONPYTHON2
    return InterpreterVariant.JYTHON


def is_crash_output(text: str) -> bool:
    return text.lstrip().startswith(_CRASH_MARKERS)


def parse_module_lines(lines: list[str]) -> list[ModuleRecord]:
    """Parse ``name;version;location;metadata-path`` lines."""
    modules: list[ModuleRecord] = []
    for line in lines:
        parts = line.strip().split(";")
        if len(parts) < 3 or not parts[0]:
            continue
        location = parts[2]
        modules.append(
            ModuleRecord(
                name=parts[0],
                version=parts[1],
                location=location,
                metadata_path=parts[3] if len(parts) > 3 and parts[3] else None,
                is_archive=ArchiveReader.is_archive_name(location),
            )
        )
    return modules


class InterpreterProbe:
    """Discovers interpreters and their module search paths."""

    def __init__(
        self,
        ctx: ProbeContext,
        runtime_factory: Callable[[], EmbeddedRuntime] = ChildInterpreterRuntime,
        allow_embedded: bool = True,
    ):
        """
        Args:
            ctx: Shared probe collaborators
            runtime_factory: Creates the EmbeddedRuntime used in embedded mode
            allow_embedded: False forces external mode for every interpreter
        """
        self.ctx = ctx
        self.runtime_factory = runtime_factory
        self.allow_embedded = allow_embedded
        self.records: list[InterpreterRecord] = []
        self._discovered = False
        self._runtime: Optional[EmbeddedRuntime] = None
        self._runtime_owner: Optional[str] = None
        self._mismatch_warned: set[str] = set()

    # Discovery

    def _case_sensitive(self) -> bool:
        cs = self.ctx.case_sensitive
        return default_case_sensitive() if cs is None else cs

    def discover(self) -> list[InterpreterRecord]:
        """
        Find the supported interpreters on PATH.

        Candidates matched by a ``[Python]`` ignore rule are dropped before
        they become records. The first record found is the default one.
        """
        if self._discovered:
            return self.records

        cached = self._load_cached()
        seen: set[str] = set()
        for spec in INTERPRETER_SPECS:
            for name in spec.names:
                exe = searchpath(name)
                if exe is None:
                    continue
                if self.ctx.ignore.lookup("Python", exe):
                    logger.debug(f"Ignoring interpreter {exe}")
                    continue
                key = path_key(os.path.realpath(exe), self._case_sensitive())
                if key in seen:
                    continue
                seen.add(key)
                self.records.append(self._make_record(spec, exe, cached))

        if self.records:
            self.records[0].is_default = True
        self._discovered = True
        self._sync_cache()
        return self.records

    def _make_record(
        self,
        spec: InterpreterSpec,
        exe: str,
        cached: dict[str, InterpreterRecord],
    ) -> InterpreterRecord:
        hit = cached.get(path_key(exe, self._case_sensitive()))
        if hit is not None:
            logger.debug(f"Using cached interpreter data for {exe}")
            hit.is_default = False
            return hit

        version = self._probe_version(exe)
        variant = variant_for(spec.key, version)
        record = InterpreterRecord(
            variant=variant,
            executable=exe,
            version=version,
            bitness=detect_bitness(exe),
        )
        record.runtime_library = self._find_runtime_library(record)
        record.is_embeddable = variant.embeddable and version is not None
        return record

    def _find_runtime_library(self, record: InterpreterRecord) -> Optional[str]:
        """The CPython DLL beside the executable, on Windows."""
        if not IS_WINDOWS or record.version is None or not record.executable:
            return None
        major, minor, _ = record.version
        candidate = os.path.join(os.path.dirname(record.executable), f"python{major}{minor}.dll")
        return candidate if self.ctx.fs.exists(candidate) else None

    def select(self, selector: InterpreterSelector) -> list[InterpreterRecord]:
        """Records covered by a selector, skipping those whose probe failed."""
        records = [r for r in self.discover() if not r.probe_failed]
        if selector is InterpreterSelector.ALL:
            return records
        if selector is InterpreterSelector.DEFAULT:
            return [r for r in records if r.is_default]
        wanted = _SELECTOR_VARIANTS[selector]
        return [r for r in records if r.variant in wanted]

    def interpreter_info(self) -> list[InterpreterRecord]:
        """Every discovered record, for the ``--pythons`` listing."""
        return self.discover()

    # Cache

    def _load_cached(self) -> dict[str, InterpreterRecord]:
        cache = self.ctx.cache
        result: dict[str, InterpreterRecord] = {}
        index = 0
        while True:
            fields = cache.getf(CACHE_SECTION, EXE_FORMAT, index)
            if not fields:
                break
            i = index
            index += 1
            if len(fields) < 7:
                logger.debug(f"Malformed cache entry python_exe_{i}")
                continue
            variant_tag, _, bits, major, minor, micro, exe = fields
            try:
                variant = InterpreterVariant(variant_tag)
            except ValueError:
                continue
            home = cache.get(CACHE_SECTION, f"python_home_{i}")
            if home is None or not self.ctx.fs.exists(exe):
                logger.debug(f"Cached interpreter '{exe}' is stale")
                continue
            version = (major, minor, micro) if major >= 0 else None
            record = InterpreterRecord(
                variant=variant,
                executable=exe,
                version=version,
                bitness=Bitness.from_value(bits),
                home_dir=home or None,
                user_site_dir=cache.get(CACHE_SECTION, f"python_user_site_{i}") or None,
            )
            record.runtime_library = self._find_runtime_library(record)
            record.is_embeddable = variant.embeddable and version is not None
            ordinals, dirs = load_cached_dirs(cache, CACHE_SECTION, f"python_path_{i}_")
            record.module_search_path = self._path_list(record, dirs, ordinals)
            result[path_key(exe, self._case_sensitive())] = record
        return result

    def _desired_cache(self) -> dict[str, str]:
        desired: dict[str, str] = {}
        for i, rec in enumerate(self.records):
            major, minor, micro = rec.version if rec.version else (-1, -1, -1)
            bits = int(rec.bitness.value) if rec.bitness is not Bitness.UNKNOWN else 0
            desired[f"python_exe_{i}"] = (
                f"{rec.variant.value},{int(rec.is_default)},{bits},{major},{minor},{micro},{rec.executable}"
            )
            if rec.module_search_path is None or rec.probe_failed:
                continue
            desired[f"python_home_{i}"] = rec.home_dir or ""
            if rec.user_site_dir:
                desired[f"python_user_site_{i}"] = rec.user_site_dir
            desired.update(path_list_cache_entries(f"python_path_{i}_", rec.module_search_path))
        return desired

    def _sync_cache(self) -> None:
        cache = self.ctx.cache
        if not cache.enabled:
            return
        current = {
            k: cache.get(CACHE_SECTION, k) for k in cache.keys(CACHE_SECTION) if k.startswith("python_")
        }
        desired = self._desired_cache()
        if current != desired:
            cache.delete_prefix(CACHE_SECTION, "python_")
            for key, value in desired.items():
                cache.put(CACHE_SECTION, key, value)

    # Running programs

    def _probe_version(self, exe: str) -> Optional[tuple[int, int, int]]:
        try:
            result = self.ctx.runner.spawn(exe, ["-c", VERSION_PROGRAM], timeout=self.ctx.timeout)
        except ProbeError as e:
            logger.warning(f"Cannot run {exe}: {e.context}")
            return None
        version = parse_version("\n".join(result.stdout_lines)) if result.ok else None
        if version is None:
            logger.debug(f"Could not get the version of {exe}; using external mode only")
        return version

    def _use_embedded(self, record: InterpreterRecord) -> bool:
        if not self.allow_embedded or not record.is_embeddable:
            return False
        target = record.runtime_library or record.executable
        bits = detect_bitness(target) if record.runtime_library else record.bitness
        host = host_bitness()
        if bits is Bitness.UNKNOWN:
            return False
        if bits is not host:
            if record.executable not in self._mismatch_warned:
                self._mismatch_warned.add(record.executable or "")
                mismatch = ProbeError(
                    ProbeErrorKind.HOST_MISMATCH,
                    f"{target} is {bits.value}-bit but envseek runs {host.value}-bit",
                )
                logger.warning(f"{mismatch}; using external mode")
            return False
        return True

    def _activate(self, record: InterpreterRecord) -> EmbeddedRuntime:
        """Make record's interpreter the live runtime, finalising any other one."""
        assert record.executable is not None
        if self._runtime is not None and self._runtime_owner == record.executable and self._runtime.is_live:
            return self._runtime
        self.close()
        runtime = self.runtime_factory()
        runtime.initialise(record.executable, os.environ.get("PYTHONHOME"), timeout=self.ctx.timeout)
        self._runtime, self._runtime_owner = runtime, record.executable
        return runtime

    def close(self) -> None:
        """Finalise the live embedded runtime, if any."""
        if self._runtime is not None:
            self._runtime.finalise()
        self._runtime, self._runtime_owner = None, None

    def _run_external(self, record: InterpreterRecord, program: str, as_script: bool) -> ProbeResult:
        assert record.executable is not None
        script_path: Optional[str] = None
        if as_script:
            fd, script_path = tempfile.mkstemp(prefix="envseek-", suffix=".py", text=True)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(program)
            args = [script_path]
        else:
            args = ["-c", program]

        try:
            result = self.ctx.runner.spawn(record.executable, args, timeout=self.ctx.timeout)
        except ProbeError as e:
            return ProbeResult(ok=False, error=e)
        finally:
            if script_path is not None:
                if self.ctx.keep_temp or self.ctx.config.probe.keep_temp:
                    logger.debug(f"Keeping temporary script {script_path}")
                else:
                    os.unlink(script_path)

        if result.timed_out:
            return ProbeResult.failure(ProbeErrorKind.SPAWN_FAILED, "timed out")
        error_text = "\n".join(result.stderr_lines)
        if is_crash_output(error_text) or is_crash_output("\n".join(result.stdout_lines)):
            text = error_text if is_crash_output(error_text) else "\n".join(result.stdout_lines)
            return ProbeResult.failure(ProbeErrorKind.PROBE_CRASH, text)
        if result.exit_code != 0:
            return ProbeResult.failure(ProbeErrorKind.SPAWN_FAILED, result.last_error_line())
        return ProbeResult.success(result.stdout_lines)

    def _run_embedded(self, record: InterpreterRecord, program: str) -> ProbeResult:
        try:
            output = self._activate(record).run_script(program)
        except ProbeError as e:
            self.close()
            return ProbeResult(ok=False, error=e)
        if is_crash_output(output):
            return ProbeResult.failure(ProbeErrorKind.PROBE_CRASH, output)
        return ProbeResult.success(output.splitlines())

    def run_program(self, record: InterpreterRecord, program: str, as_script: bool = False) -> ProbeResult:
        """
        Run one probe program in the record's interpreter.

        External mode passes the program with ``-c``, or with ``as_script``
        through a temporary file (its directory then lands on sys.path).

        A crash marks the record probe-failed for the rest of the run.
        """
        if record.probe_failed:
            return ProbeResult.failure(ProbeErrorKind.PROBE_CRASH, "probe failed earlier")
        if self._use_embedded(record):
            result = self._run_embedded(record, program)
        else:
            result = self._run_external(record, program, as_script)

        if not result.ok and result.error is not None:
            record.probe_failed = True
            detail = result.error.context.strip().splitlines()
            logger.warning(
                f"{record.display_name} failed ({result.error.kind.value}):"
                f" {detail[-1] if detail else ''}"
            )
            if result.error.kind is ProbeErrorKind.PROBE_CRASH:
                logger.debug(result.error.context)
        return result

    # Queries

    def _path_list(
        self, record: InterpreterRecord, dirs: list[str], ordinals: Optional[list[int]] = None
    ) -> PathList:
        return build_path_list(
            owner=record.display_name,
            raw_paths=dirs,
            fs=self.ctx.fs,
            case_sensitive=self._case_sensitive(),
            list_name=f"{record.variant.value}:sys.path",
            deduplicate=True,
            ordinals=ordinals,
        )

    def module_search_path(self, record: InterpreterRecord) -> PathList:
        """The record's sys.path as a PathList, probing it if needed."""
        if record.module_search_path is not None:
            return record.module_search_path

        result = self.run_program(record, SYS_PATH_PROGRAM)
        if not result.ok:
            return PathList(owner=record.display_name)
        dirs = [line.strip() for line in result.paths if line.strip()]

        home = self.run_program(record, HOME_PROGRAM)
        if home.ok:
            lines = home.paths + ["", ""]
            record.home_dir = lines[0].strip() or None
            record.user_site_dir = lines[1].strip() or None

        record.module_search_path = self._path_list(record, dirs)
        if not record.probe_failed:
            self._sync_cache()
        return record.module_search_path

    def list_modules(self, record: InterpreterRecord) -> list[ModuleRecord]:
        """Installed distributions of one interpreter (never cached)."""
        if not record.installed_modules:
            result = self.run_program(record, MODULES_PROGRAM, as_script=True)
            if result.ok:
                record.installed_modules = parse_module_lines(result.paths)
        return record.installed_modules
