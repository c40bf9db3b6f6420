"""Tests for canonicalisation, env-var splitting and PATH lookups."""

import logging
import os

import pytest

from envseek.core.path_utils import (
    IS_WINDOWS,
    canonicalise,
    cygwin_to_windows,
    expand_env,
    has_unexpanded,
    join_path,
    same_path,
    searchpath,
    split_env_var,
    to_display,
    which_all,
)
from tests.support.fakes import make_executable

posix_only = pytest.mark.skipif(IS_WINDOWS, reason="POSIX path semantics")


class TestCanonicalise:
    """Canonical path forms."""

    @posix_only
    def test_relative_paths_resolve_against_cwd(self):
        assert canonicalise("a/../b/./c", cwd="/x") == "/x/b/c"

    @posix_only
    def test_trailing_separators_and_double_slashes(self):
        assert canonicalise("/usr/lib/") == "/usr/lib"
        assert canonicalise("//usr//lib") == "/usr/lib"

    @posix_only
    def test_windows_paths_on_a_posix_host(self):
        assert canonicalise("C:\\py\\Lib\\") == "c:/py/Lib"

    def test_quotes_are_stripped(self, tmp_path):
        assert canonicalise(f'"{tmp_path}"') == canonicalise(str(tmp_path))

    def test_idempotent(self, tmp_path):
        once = canonicalise(str(tmp_path / "a" / ".." / "b"))

        assert canonicalise(once) == once


class TestExpansion:
    """Environment references."""

    def test_percent_and_dollar_forms(self):
        env = {"FOO": "/a"}

        assert expand_env("%FOO%/x", env) == "/a/x"
        assert expand_env("$FOO/x", env) == "/a/x"
        assert expand_env("${FOO}/x", env) == "/a/x"

    def test_undefined_references_are_kept(self):
        assert expand_env("%NOPE%/x", {}) == "%NOPE%/x"
        assert has_unexpanded("%NOPE%/x")
        assert not has_unexpanded("/plain")


class TestSplitEnvVar:
    """Splitting PATH-like values."""

    def test_empty_components_and_trailing_separators(self):
        assert split_env_var("X", "/a;/bb/;;/c", cwd="/w", separator=";") == ["/a", "/bb", "/c"]

    def test_none_and_empty_values(self):
        assert split_env_var("X", None) == []
        assert split_env_var("X", "") == []

    def test_add_cwd_puts_the_current_directory_first(self):
        assert split_env_var("PATH", "/a", cwd="/w", add_cwd=True, separator=";") == ["/w", "/a"]

    def test_explicit_dot_first_is_not_doubled(self):
        assert split_env_var("PATH", ".;/a", cwd="/w", add_cwd=True, separator=";") == ["/w", "/a"]

    def test_dot_not_first_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="envseek"):
            parts = split_env_var("PATH", "/a;.", cwd="/w", separator=";")

        assert parts == ["/a", "/w"]
        assert "asking for trouble" in caplog.text

    def test_quotes_and_cygdrive(self):
        parts = split_env_var("X", '"/a b";/cygdrive/c/tools', cwd="/w", separator=";")

        assert parts == ["/a b", "c:/tools"]

    def test_unexpanded_component_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="envseek"):
            split_env_var("X", "%NOT_SET_ANYWHERE%\\bin", cwd="/w", separator=";")

        assert "unexpanded" in caplog.text


class TestHelpers:
    """Small path helpers."""

    def test_cygwin_to_windows(self):
        assert cygwin_to_windows("/cygdrive/c/tools") == "c:/tools"
        assert cygwin_to_windows("/cygdrive/D") == "d:/"
        assert cygwin_to_windows("/usr/include") == "/usr/include"

    def test_join_path_keeps_the_base_style(self):
        assert join_path("/a", "b/c") == "/a/b/c"
        assert join_path("c:\\x", "y/z") == "c:\\x\\y\\z"
        assert join_path("/", "usr") == "/usr"
        assert join_path("/a", "", "b") == "/a/b"

    def test_same_path(self):
        assert same_path("/A/b", "/a/B/", case_sensitive=False)
        assert not same_path("/A/b", "/a/B", case_sensitive=True)
        assert same_path("/a/b/", "/a/b", case_sensitive=True)

    def test_to_display(self):
        assert to_display("c:\\x\\y", unix=True) == "c:/x/y"


@posix_only
class TestSearchPath:
    """Executable lookups along PATH."""

    def test_finds_executables_in_order(self, tmp_path, bin_dir, monkeypatch):
        second = tmp_path / "bin2"
        make_executable(bin_dir, "tool")
        make_executable(second, "tool")
        monkeypatch.setenv("PATH", os.pathsep.join([str(bin_dir), str(second), str(bin_dir)]))

        hits = which_all("tool")

        assert hits == [canonicalise(str(bin_dir / "tool")), canonicalise(str(second / "tool"))]
        assert searchpath("tool") == hits[0]

    def test_non_executable_files_are_skipped(self, bin_dir):
        (bin_dir / "data").write_text("x", encoding="utf-8")

        assert searchpath("data") is None

    def test_other_variables(self, tmp_path):
        make_executable(tmp_path / "tools", "tool")
        environ = {"TOOLS": str(tmp_path / "tools")}

        assert searchpath("tool", env_var="TOOLS", environ=environ) is not None
        assert searchpath("tool", env_var="MISSING", environ=environ) is None
