"""Tests for compiler discovery and include/library probing."""

import logging
import os

import pytest

from envseek.core.ignore import IgnoreRegistry
from envseek.core.models import Bitness, CompilerFamily, ProbeState
from envseek.core.path_utils import IS_WINDOWS, canonicalise
from envseek.infrastructure.cache import PersistentCache
from envseek.infrastructure.process import ProcessResult
from envseek.probes.compiler import CompilerProbe, compiler_specs, parse_include_output
from tests.support.fakes import GCC_INCLUDE_BLOCK, FakeProcessRunner, make_executable, ok

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX compiler layout")

GCC_LIBRARIES = ok("install: /usr/lib/gcc/x86_64-linux-gnu/12/", "libraries: =/u/lib:/u/lib2")


def gcc_runner() -> FakeProcessRunner:
    runner = FakeProcessRunner()
    runner.on("gcc", "-dM", ok(*GCC_INCLUDE_BLOCK))
    runner.on("gcc", "-print-search-dirs", GCC_LIBRARIES)
    return runner


class TestParsing:
    """Parsing compiler output."""

    def test_include_block(self):
        lines = GCC_INCLUDE_BLOCK + [" /after/end"]

        assert parse_include_output(lines) == ["/u/inc/a", "/u/inc/b", "/u/inc/a"]

    def test_framework_suffix_is_dropped(self):
        lines = [
            "#include <...> search starts here:",
            " /Library/Frameworks (framework directory)",
            "End of search list.",
        ]

        assert parse_include_output(lines) == ["/Library/Frameworks"]

    def test_specs_cover_every_family(self):
        families = {spec.family for spec in compiler_specs()}

        assert families == set(CompilerFamily)


class TestDiscovery:
    """Finding compilers on PATH."""

    def test_gcc_record(self, bin_dir, make_ctx):
        gcc = make_executable(bin_dir, "gcc")
        probe = CompilerProbe(make_ctx())

        records = probe.discover()

        assert len(records) == 1
        record = records[0]
        assert record.family is CompilerFamily.GNU_C
        assert record.full_path == canonicalise(str(gcc))
        assert record.include_env == "C_INCLUDE_PATH"
        assert record.cache_id == "0"
        assert record.state is ProbeState.DISCOVERED

    def test_prefixed_toolchains_get_their_own_cache_ids(self, bin_dir, make_ctx):
        make_executable(bin_dir, "gcc")
        make_executable(bin_dir, "avr-gcc")

        records = CompilerProbe(make_ctx(), no_prefix=True).discover()

        assert [r.short_name for r in records] == ["gcc", "avr-gcc"]
        assert [r.cache_id for r in records] == ["0", "0-1"]
        assert [r.ignored for r in records] == [False, True]

    def test_ignore_rules_and_excluded_families(self, bin_dir, make_ctx):
        make_executable(bin_dir, "gcc")
        make_executable(bin_dir, "clang")
        ignore = IgnoreRegistry()
        ignore.add("Compiler", "gcc")

        records = CompilerProbe(make_ctx(ignore=ignore), excluded=frozenset({CompilerFamily.CLANG})).discover()

        assert [r.ignored for r in records] == [True, True]

    def test_ignored_compiler_is_never_spawned(self, bin_dir, make_ctx):
        make_executable(bin_dir, "gcc")
        ignore = IgnoreRegistry()
        ignore.add("Compiler", "gcc")
        runner = gcc_runner()
        probe = CompilerProbe(make_ctx(runner=runner, ignore=ignore))

        record = probe.discover()[0]
        plist = probe.include_paths(record)

        assert len(plist) == 0
        assert runner.calls == []


class TestGnuProbe:
    """Spawning gcc for its directories."""

    def test_include_directories_are_deduplicated_and_cached(self, bin_dir, make_ctx):
        make_executable(bin_dir, "gcc")
        runner = gcc_runner()
        ctx = make_ctx(runner=runner)
        probe = CompilerProbe(ctx)

        record = probe.discover()[0]
        plist = probe.include_paths(record)

        assert plist.canonical_paths == ["/u/inc/a", "/u/inc/b"]
        assert str(plist[1].origin) == "gcc:C_INCLUDE_PATH[1]"
        assert ctx.cache.get("Compiler", "compiler_inc_0_0") == "0,/u/inc/a"
        assert ctx.cache.get("Compiler", "compiler_inc_0_1") == "1,/u/inc/b"
        assert ctx.cache.get("Compiler", "compiler_inc_0_2") is None
        assert ctx.cache.get("Compiler", "compiler_state_0") == "probed"
        assert record.state is ProbeState.PROBED

    def test_library_directories(self, bin_dir, make_ctx):
        make_executable(bin_dir, "gcc")
        runner = gcc_runner()
        probe = CompilerProbe(make_ctx(runner=runner), bitness=Bitness.BITS_32)

        record = probe.discover()[0]
        plist = probe.library_paths(record)

        assert plist.canonical_paths == ["/u/lib", "/u/lib2"]
        lib_call = [c for c in runner.calls if "-print-search-dirs" in c.args][0]
        assert lib_call.args[0] == "-m32"

    def test_include_probe_arguments(self, bin_dir, make_ctx):
        make_executable(bin_dir, "gcc")
        runner = gcc_runner()
        probe = CompilerProbe(make_ctx(runner=runner))

        probe.include_paths(probe.discover()[0])

        assert runner.calls[0].args == ["-v", "-dM", "-xc", "-c", "-", "-o", os.devnull]

    def test_timeout_hides_and_restores_pollution_variables(self, bin_dir, make_ctx, monkeypatch, caplog):
        make_executable(bin_dir, "gcc")
        monkeypatch.setenv("C_INCLUDE_PATH", "/sentinel")
        runner = FakeProcessRunner()
        runner.on("gcc", "-dM", ProcessResult(exit_code=-1, timed_out=True))
        runner.on("gcc", "-print-search-dirs", GCC_LIBRARIES)
        probe = CompilerProbe(make_ctx(runner=runner))
        record = probe.discover()[0]

        with caplog.at_level(logging.WARNING, logger="envseek"):
            plist = probe.include_paths(record)

        assert len(plist) == 0
        assert record.state is ProbeState.FAILED
        assert "C_INCLUDE_PATH" not in runner.calls[0].environ
        assert os.environ["C_INCLUDE_PATH"] == "/sentinel"
        assert "timed out" in caplog.text

    def test_gxx_adds_the_cxx_subdirectory(self, bin_dir, tmp_path, make_ctx):
        make_executable(bin_dir, "g++")
        inc = tmp_path / "inc"
        (inc / "c++").mkdir(parents=True)
        runner = FakeProcessRunner()
        runner.on(
            "g++",
            "-dM",
            ok("#include <...> search starts here:", f" {inc}", "End of search list."),
        )
        probe = CompilerProbe(make_ctx(runner=runner))

        plist = probe.include_paths(probe.discover()[0])

        assert plist.canonical_paths == [canonicalise(str(inc)), canonicalise(str(inc / "c++"))]

    def test_cached_directories_are_reused_without_spawning(self, bin_dir, make_ctx, cache_file):
        make_executable(bin_dir, "gcc")
        first_ctx = make_ctx(runner=gcc_runner())
        first = CompilerProbe(first_ctx)
        first.include_paths(first.discover()[0])
        first_ctx.cache.flush()

        cache = PersistentCache(cache_file)
        cache.load()
        runner = FakeProcessRunner()
        second = CompilerProbe(make_ctx(runner=runner, cache=cache))
        record = second.discover()[0]

        assert second.include_paths(record).canonical_paths == ["/u/inc/a", "/u/inc/b"]
        assert second.library_paths(record).canonical_paths == ["/u/lib", "/u/lib2"]
        assert runner.calls == []

    def test_cached_directories_keep_their_origins(self, bin_dir, make_ctx, cache_file):
        make_executable(bin_dir, "gcc")
        runner = FakeProcessRunner()
        runner.on(
            "gcc",
            "-dM",
            ok("#include <...> search starts here:", " /u/a", " /u/a", " /u/b", "End of search list."),
        )
        runner.on("gcc", "-print-search-dirs", GCC_LIBRARIES)
        first_ctx = make_ctx(runner=runner)
        first = CompilerProbe(first_ctx)
        probed = [str(e.origin) for e in first.include_paths(first.discover()[0])]
        first_ctx.cache.flush()

        cache = PersistentCache(cache_file)
        cache.load()
        second = CompilerProbe(make_ctx(runner=FakeProcessRunner(), cache=cache))
        cached = [str(e.origin) for e in second.include_paths(second.discover()[0])]

        assert probed == ["gcc:C_INCLUDE_PATH[0]", "gcc:C_INCLUDE_PATH[2]"]
        assert cached == probed


class TestEnvironmentFamilies:
    """Compilers whose directories come from the environment or config files."""

    def test_msvc_reads_include_and_warns_about_missing_lib(self, bin_dir, tmp_path, make_ctx, monkeypatch, caplog):
        make_executable(bin_dir, "cl")
        inc = tmp_path / "msvc" / "include"
        inc.mkdir(parents=True)
        monkeypatch.setenv("INCLUDE", str(inc))
        runner = FakeProcessRunner()
        probe = CompilerProbe(make_ctx(runner=runner))
        record = probe.discover()[0]

        with caplog.at_level(logging.WARNING, logger="envseek"):
            includes = probe.include_paths(record)

        assert includes.canonical_paths == [canonicalise(str(inc))]
        assert len(probe.library_paths(record)) == 0
        assert record.state is ProbeState.FAILED
        assert "%LIB% is not defined" in caplog.text
        assert runner.calls == []

    def test_watcom_directories(self, bin_dir, tmp_path, make_ctx, monkeypatch):
        make_executable(bin_dir, "wcc386")
        root = tmp_path / "watcom"
        (root / "lh").mkdir(parents=True)
        monkeypatch.setenv("WATCOM", str(root))
        monkeypatch.chdir(tmp_path)
        probe = CompilerProbe(make_ctx())

        plist = probe.include_paths(probe.discover()[0])

        assert [p for p in plist.canonical_paths] == [
            canonicalise(str(tmp_path)),
            canonicalise(str(root / "h")),
            canonicalise(str(root / "h" / "nt")),
            canonicalise(str(root / "lh")),
        ]

    def test_borland_config_file(self, tmp_path, make_ctx, monkeypatch):
        root = tmp_path / "bcc"
        make_executable(root / "bin", "bcc32")
        (root / "bin" / "bcc32.cfg").write_text(
            "-isystem @\\..\\include\n-I/extra/inc;/other/inc\n-L@\\..\\lib\n",
            encoding="utf-8",
        )
        monkeypatch.setenv("PATH", str(root / "bin"))
        probe = CompilerProbe(make_ctx())
        record = probe.discover()[0]

        assert probe.include_paths(record).canonical_paths == [
            canonicalise(str(root / "include")),
            "/extra/inc",
            "/other/inc",
        ]
        assert probe.library_paths(record).canonical_paths == [canonicalise(str(root / "lib"))]
