"""Tests for interpreter discovery, module search paths and embedded mode."""

import logging
import os
import zipfile

import pytest

from envseek.core.config import EnvseekConfig
from envseek.core.errors import ProbeError, ProbeErrorKind
from envseek.core.ignore import IgnoreRegistry
from envseek.core.models import EntryKind, InterpreterSelector, InterpreterVariant
from envseek.core.path_utils import IS_WINDOWS, canonicalise
from envseek.infrastructure.cache import PersistentCache
from envseek.infrastructure.process import ProcessResult
from envseek.probes.interpreter import (
    InterpreterProbe,
    is_crash_output,
    parse_module_lines,
    parse_version,
    variant_for,
)
from tests.support.fakes import (
    FakeProcessRunner,
    FakeRuntime,
    exe_name,
    host_bits,
    make_binary,
    make_executable,
    ok,
    python_runner,
)

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX interpreter layout")

TRACEBACK = [
    "Traceback (most recent call last):",
    '  File "<string>", line 1, in <module>',
    "ImportError: No module named site",
]


class TestParsing:
    """Parsing interpreter output."""

    def test_parse_version(self):
        assert parse_version("(3, 11, 4)") == (3, 11, 4)
        assert parse_version("sys.version_info(major=3") is None

    def test_variants(self):
        assert variant_for("python3", (2, 7, 18)) is InterpreterVariant.PYTHON2
        assert variant_for("python3", (3, 12, 0)) is InterpreterVariant.PYTHON3
        assert variant_for("ironpython", (3, 4, 0)) is InterpreterVariant.IRONPYTHON3
        assert variant_for("ironpython", None) is InterpreterVariant.IRONPYTHON2
        assert variant_for("pypy", (3, 10, 0)) is InterpreterVariant.PYPY

    def test_crash_output(self):
        assert is_crash_output("\n".join(TRACEBACK))
        assert is_crash_output("  ImportError: no site")
        assert not is_crash_output("/usr/lib/python3")

    def test_module_lines(self):
        modules = parse_module_lines(
            [
                "requests;2.31.0;/site;/site/requests-2.31.0.dist-info",
                "eggy;1.0;/site/eggy-1.0.egg;",
                "broken",
            ]
        )

        assert [m.name for m in modules] == ["requests", "eggy"]
        assert modules[0].metadata_path == "/site/requests-2.31.0.dist-info"
        assert modules[1].metadata_path is None
        assert modules[1].is_archive


class TestDiscovery:
    """Finding interpreters on PATH."""

    def test_first_interpreter_is_the_default(self, bin_dir, make_ctx):
        exe = make_executable(bin_dir, "python3")
        make_executable(bin_dir, "pypy3")
        runner = python_runner()
        runner.on("pypy3", "version_info", ok("(3, 10, 13)"))
        probe = InterpreterProbe(make_ctx(runner=runner))

        records = probe.discover()

        assert [r.variant for r in records] == [InterpreterVariant.PYTHON3, InterpreterVariant.PYPY]
        assert records[0].executable == canonicalise(str(exe))
        assert records[0].version == (3, 11, 4)
        assert records[0].is_default and not records[1].is_default
        assert records[0].is_embeddable and not records[1].is_embeddable
        assert probe.select(InterpreterSelector.DEFAULT) == [records[0]]
        assert probe.select(InterpreterSelector.PYPY) == [records[1]]
        assert probe.select(InterpreterSelector.ALL) == records
        assert probe.select(InterpreterSelector.PY2) == []

    def test_same_file_under_two_names_is_one_record(self, bin_dir, make_ctx):
        exe = make_executable(bin_dir, "python3")
        os.symlink(exe, bin_dir / "python")

        records = InterpreterProbe(make_ctx(runner=python_runner())).discover()

        assert len(records) == 1

    def test_ignored_interpreter_never_becomes_a_record(self, bin_dir, make_ctx):
        make_executable(bin_dir, "python3")
        ignore = IgnoreRegistry()
        ignore.add("Python", exe_name("python3"))
        runner = python_runner()

        records = InterpreterProbe(make_ctx(runner=runner, ignore=ignore)).discover()

        assert records == []
        assert runner.calls == []

    def test_version_failure_leaves_an_unknown_version(self, bin_dir, make_ctx):
        make_executable(bin_dir, "python3")

        record = InterpreterProbe(make_ctx(runner=FakeProcessRunner())).discover()[0]

        assert record.version is None
        assert not record.is_embeddable


class TestExternalMode:
    """Spawning the interpreter for each question."""

    def test_windows_style_paths_are_canonicalised(self, bin_dir, make_ctx):
        make_executable(bin_dir, "python3")
        runner = python_runner(sys_path=("C:\\py\\Lib", "/opt/py/lib", "/opt/py/lib/"), user_site="/home/u/.local")
        probe = InterpreterProbe(make_ctx(runner=runner))
        record = probe.discover()[0]

        plist = probe.module_search_path(record)

        assert plist.canonical_paths == ["c:/py/Lib", "/opt/py/lib"]
        assert plist[0].kind is EntryKind.MISSING
        assert str(plist[1].origin) == "py3:sys.path[1]"
        assert record.home_dir == "/opt/py"
        assert record.user_site_dir == "/home/u/.local"

    def test_archives_on_sys_path(self, bin_dir, tmp_path, make_ctx):
        make_executable(bin_dir, "python3")
        egg = tmp_path / "site.egg"
        with zipfile.ZipFile(egg, "w") as zf:
            zf.writestr("pkg/__init__.py", "")
        probe = InterpreterProbe(make_ctx(runner=python_runner(sys_path=(str(egg),))))

        plist = probe.module_search_path(probe.discover()[0])

        assert plist[0].kind is EntryKind.ARCHIVE

    def test_crash_marks_the_record_failed(self, bin_dir, make_ctx, caplog):
        make_executable(bin_dir, "python3")
        runner = FakeProcessRunner()
        runner.on("python3", "version_info", ok("(3, 11, 4)"))
        runner.on("python3", "for p in sys.path", ProcessResult(exit_code=1, stderr_lines=TRACEBACK))
        probe = InterpreterProbe(make_ctx(runner=runner))
        record = probe.discover()[0]

        with caplog.at_level(logging.WARNING, logger="envseek"):
            plist = probe.module_search_path(record)

        assert len(plist) == 0
        assert record.probe_failed
        assert "probe-crash" in caplog.text
        assert probe.select(InterpreterSelector.ALL) == []

    def test_modules_run_from_a_temporary_script(self, bin_dir, make_ctx):
        make_executable(bin_dir, "python3")
        runner = python_runner()
        runner.on("python3", "metadata", ok("requests;2.31.0;/site;", "eggy;1.0;/site/eggy.egg;"))
        probe = InterpreterProbe(make_ctx(runner=runner))

        modules = probe.list_modules(probe.discover()[0])

        assert [m.name for m in modules] == ["requests", "eggy"]
        script_call = runner.calls[-1]
        assert script_call.args[0].endswith(".py")
        assert "metadata" in script_call.script
        assert not os.path.exists(script_call.args[0])

    def test_cached_interpreter_is_not_spawned_again(self, bin_dir, make_ctx, cache_file):
        make_executable(bin_dir, "python3")
        first_ctx = make_ctx(runner=python_runner(sys_path=("/opt/py/lib",)))
        first = InterpreterProbe(first_ctx)
        first.module_search_path(first.discover()[0])
        first_ctx.cache.flush()

        cache = PersistentCache(cache_file)
        cache.load()
        runner = FakeProcessRunner()
        second = InterpreterProbe(make_ctx(runner=runner, cache=cache))
        record = second.discover()[0]

        assert record.version == (3, 11, 4)
        assert record.is_default
        assert second.module_search_path(record).canonical_paths == ["/opt/py/lib"]
        assert runner.calls == []

    def test_cached_sys_path_keeps_its_origins(self, bin_dir, make_ctx, cache_file):
        make_executable(bin_dir, "python3")
        first_ctx = make_ctx(runner=python_runner(sys_path=("/opt/a", "/opt/a/", "/opt/b")))
        first = InterpreterProbe(first_ctx)
        probed = [str(e.origin) for e in first.module_search_path(first.discover()[0])]
        first_ctx.cache.flush()

        cache = PersistentCache(cache_file)
        cache.load()
        second = InterpreterProbe(make_ctx(runner=FakeProcessRunner(), cache=cache))
        cached = [str(e.origin) for e in second.module_search_path(second.discover()[0])]

        assert probed == ["py3:sys.path[0]", "py3:sys.path[2]"]
        assert cached == probed


class TestEmbeddedMode:
    """One live interpreter answering every program."""

    def test_programs_run_in_the_embedded_runtime(self, bin_dir, make_ctx):
        make_binary(bin_dir, "python3", host_bits())
        runner = python_runner()
        runtimes: list[FakeRuntime] = []

        def factory() -> FakeRuntime:
            runtimes.append(FakeRuntime({"for p in sys.path": "/emb/lib\n", "sys.prefix": "/emb\n\n"}))
            return runtimes[-1]

        probe = InterpreterProbe(make_ctx(runner=runner), runtime_factory=factory)
        record = probe.discover()[0]

        plist = probe.module_search_path(record)
        probe.close()

        assert plist.canonical_paths == ["/emb/lib"]
        assert record.home_dir == "/emb"
        assert len(runtimes) == 1
        assert runtimes[0].initialised_with == (record.executable, None)
        assert len(runtimes[0].scripts) == 2
        assert runtimes[0].finalised == 1
        assert len(runner.calls) == 1

    def test_runtime_gets_the_probe_timeout(self, bin_dir, make_ctx):
        make_binary(bin_dir, "python3", host_bits())
        config = EnvseekConfig()
        config.probe.timeout = 2.5
        runtime = FakeRuntime({"for p in sys.path": "/emb/lib\n"})
        probe = InterpreterProbe(make_ctx(runner=python_runner(), config=config), runtime_factory=lambda: runtime)

        probe.module_search_path(probe.discover()[0])

        assert runtime.timeout == 2.5

    def test_embedded_timeout_marks_the_record_failed(self, bin_dir, make_ctx, caplog):
        make_binary(bin_dir, "python3", host_bits())

        class HangingRuntime(FakeRuntime):
            def run_script(self, code):
                raise ProbeError(ProbeErrorKind.SPAWN_FAILED, "timed out after 30s")

        runtime = HangingRuntime()
        probe = InterpreterProbe(make_ctx(runner=python_runner()), runtime_factory=lambda: runtime)
        record = probe.discover()[0]

        with caplog.at_level(logging.WARNING, logger="envseek"):
            plist = probe.module_search_path(record)

        assert len(plist) == 0
        assert record.probe_failed
        assert runtime.finalised == 1
        assert "timed out" in caplog.text

    def test_embedded_crash_marks_the_record_failed(self, bin_dir, make_ctx):
        make_binary(bin_dir, "python3", host_bits())
        runtime = FakeRuntime({"for p in sys.path": "\n".join(TRACEBACK)})
        probe = InterpreterProbe(make_ctx(runner=python_runner()), runtime_factory=lambda: runtime)
        record = probe.discover()[0]

        assert len(probe.module_search_path(record)) == 0
        assert record.probe_failed

    def test_bitness_mismatch_falls_back_to_external_mode(self, bin_dir, make_ctx, caplog):
        make_binary(bin_dir, "python3", 32 if host_bits() == 64 else 64)
        runner = python_runner(sys_path=("/ext/lib",))
        runtimes: list[FakeRuntime] = []
        probe = InterpreterProbe(make_ctx(runner=runner), runtime_factory=lambda: runtimes.append(FakeRuntime()))
        record = probe.discover()[0]

        with caplog.at_level(logging.WARNING, logger="envseek"):
            plist = probe.module_search_path(record)

        assert plist.canonical_paths == ["/ext/lib"]
        assert runtimes == []
        assert "host-mismatch" in caplog.text
        assert "using external mode" in caplog.text

    def test_embedding_can_be_disabled(self, bin_dir, make_ctx):
        make_binary(bin_dir, "python3", host_bits())
        runtimes: list[FakeRuntime] = []
        probe = InterpreterProbe(
            make_ctx(runner=python_runner(sys_path=("/ext/lib",))),
            runtime_factory=lambda: runtimes.append(FakeRuntime()),
            allow_embedded=False,
        )

        plist = probe.module_search_path(probe.discover()[0])

        assert plist.canonical_paths == ["/ext/lib"]
        assert runtimes == []
