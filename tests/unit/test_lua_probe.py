"""Tests for the Lua search lists and interpreter lookup."""

import logging

import pytest

from envseek.core.ignore import IgnoreRegistry
from envseek.core.models import InterpreterVariant
from envseek.core.path_utils import IS_WINDOWS, canonicalise
from envseek.infrastructure.cache import PersistentCache
from envseek.probes.lua import LuaProbe, parse_lua_version, template_directory
from tests.support.fakes import FakeProcessRunner, make_executable, ok

pytestmark = pytest.mark.skipif(IS_WINDOWS, reason="POSIX Lua layout")


def test_template_directory():
    assert template_directory("/usr/share/lua/5.4/?.lua", "/w") == "/usr/share/lua/5.4"
    assert template_directory("?.lua", "/w") == "/w"
    assert template_directory("/usr/share/lua/5.4", "/w") is None


def test_parse_lua_version():
    assert parse_lua_version(["Lua 5.4.6  Copyright (C) 1994-2023 Lua.org, PUC-Rio"], False) == (5, 4, 6)
    assert parse_lua_version(["Lua 5.1"], False) == (5, 1, 0)
    assert parse_lua_version(["LuaJIT 2.1.0-beta3 -- Copyright"], True) == (2, 1, 0)
    assert parse_lua_version(["LuaJIT 2.1.0"], False) is None


class TestSearchLists:
    """LUA_PATH and LUA_CPATH."""

    def test_lua_path_directories_and_filter(self, tmp_path, make_ctx, monkeypatch, caplog):
        share = tmp_path / "share"
        share.mkdir()
        monkeypatch.setenv("LUA_PATH", f"{share}/?.lua;{share}/?/init.lua;;{tmp_path}/gone/?.lua")

        with caplog.at_level(logging.WARNING, logger="envseek"):
            lists = LuaProbe(make_ctx()).search_lists()

        assert [lst.env_var for lst in lists] == ["LUA_PATH"]
        lua_path = lists[0]
        assert lua_path.paths.canonical_paths == [
            canonicalise(str(share)),
            canonicalise(str(tmp_path / "gone")),
        ]
        assert lua_path.name_filter.match("socket.lua")
        assert not lua_path.name_filter.match("socket.so")
        assert "LUA_CPATH not defined" in caplog.text

    def test_cpath_filter_is_shared_libraries(self, tmp_path, make_ctx, monkeypatch):
        monkeypatch.setenv("LUA_PATH", f"{tmp_path}/?.lua")
        monkeypatch.setenv("LUA_CPATH", f"{tmp_path}/lib/?.so")

        lists = LuaProbe(make_ctx()).search_lists()

        assert [lst.env_var for lst in lists] == ["LUA_PATH", "LUA_CPATH"]
        assert lists[1].name_filter.match("core.so")

    def test_templates_without_a_placeholder_warn(self, tmp_path, make_ctx, monkeypatch, caplog):
        monkeypatch.setenv("LUA_PATH", f"{tmp_path}/plain;{tmp_path}/?.lua")

        with caplog.at_level(logging.WARNING, logger="envseek"):
            lists = LuaProbe(make_ctx()).search_lists()

        assert lists[0].paths.canonical_paths == [canonicalise(str(tmp_path))]
        assert 'has no "?" pattern' in caplog.text

    def test_ignored_directories_are_left_out(self, tmp_path, make_ctx, monkeypatch):
        monkeypatch.setenv("LUA_PATH", f"{tmp_path}/a/?.lua;{tmp_path}/b/?.lua")
        ignore = IgnoreRegistry()
        ignore.add("Lua", f"{tmp_path}/a")

        lists = LuaProbe(make_ctx(ignore=ignore)).search_lists()

        assert lists[0].paths.canonical_paths == [canonicalise(str(tmp_path / "b"))]


class TestInterpreter:
    """Finding lua on PATH."""

    def test_version_is_probed_and_cached(self, bin_dir, make_ctx, cache_file, monkeypatch):
        exe = make_executable(bin_dir, "lua")
        monkeypatch.setenv("LUA_TRACE", "1")
        runner = FakeProcessRunner()
        runner.on("lua", "-v", ok("Lua 5.4.6  Copyright (C) 1994-2023 Lua.org, PUC-Rio"))
        ctx = make_ctx(runner=runner)

        info = LuaProbe(ctx).lua_info()

        assert info is not None
        assert info.variant is InterpreterVariant.LUA
        assert info.executable == canonicalise(str(exe))
        assert info.version == (5, 4, 6)
        assert "LUA_TRACE" not in runner.calls[0].environ
        ctx.cache.flush()

        cache = PersistentCache(cache_file)
        cache.load()
        again_runner = FakeProcessRunner()
        again = LuaProbe(make_ctx(runner=again_runner, cache=cache)).lua_info()

        assert again is not None and again.version == (5, 4, 6)
        assert again_runner.calls == []

    def test_no_lua_on_path(self, make_ctx):
        assert LuaProbe(make_ctx()).lua_info() is None
