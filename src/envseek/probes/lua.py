"""
Lua domain.

``LUA_PATH`` and ``LUA_CPATH`` hold templates such as
``/usr/share/lua/5.4/?.lua``; the directory before the ``?`` is searched
and matches are limited to the template's suffix. The Lua interpreter on
PATH is asked for its version with ``lua -v``.
"""

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

from envseek.core.errors import ProbeError
from envseek.core.glob_matcher import GlobPattern
from envseek.core.models import InterpreterRecord, InterpreterVariant, PathList
from envseek.core.path_list import build_path_list
from envseek.core.path_utils import IS_WINDOWS, searchpath, split_env_var
from envseek.probes.base import ProbeContext

logger = logging.getLogger(__name__)

CACHE_SECTION = "Lua"

_LUA_VERSION_RE = re.compile(r"^Lua\s+(\d+)\.(\d+)(?:\.(\d+))?")
_LUAJIT_VERSION_RE = re.compile(r"^LuaJIT\s+(\d+)\.(\d+)(?:\.(\d+))?")

SHARED_LIB_SUFFIX = ".dll" if IS_WINDOWS else ".so"


@dataclass
class LuaSearchList:
    """A Lua path variable turned into directories plus a file-name filter."""

    env_var: str
    paths: PathList
    name_filter: GlobPattern


def template_directory(template: str, cwd: str) -> Optional[str]:
    """
    Directory part of a ``LUA_PATH`` template.

    ``/x/?.lua`` gives ``/x``; ``?.lua`` gives cwd; a template without
    ``?`` gives None.
    """
    idx = template.rfind("?")
    if idx < 0:
        return None
    head = template[:idx].rstrip("/\\")
    return head or cwd


def parse_lua_version(lines: list[str], luajit: bool) -> Optional[tuple[int, int, int]]:
    regex = _LUAJIT_VERSION_RE if luajit else _LUA_VERSION_RE
    for line in lines:
        m = regex.match(line.strip())
        if m:
            return int(m.group(1)), int(m.group(2)), int(m.group(3) or 0)
    return None


class LuaProbe:
    """Builds the Lua search lists and finds the Lua interpreter."""

    def __init__(self, ctx: ProbeContext):
        self.ctx = ctx
        self._info: Optional[InterpreterRecord] = None

    @property
    def prefer_luajit(self) -> bool:
        return self.ctx.config.lua.luajit

    def search_lists(self) -> list[LuaSearchList]:
        """The LUA_PATH and LUA_CPATH lists, in that order; unset variables are skipped."""
        lists = []
        for env_var, suffix in (("LUA_PATH", ".lua"), ("LUA_CPATH", SHARED_LIB_SUFFIX)):
            plist = self._path_list(env_var)
            if plist is not None:
                name_filter = GlobPattern.compile(f"*{suffix}", case_sensitive=self.ctx.case_sensitive)
                lists.append(LuaSearchList(env_var=env_var, paths=plist, name_filter=name_filter))
        return lists

    def _path_list(self, env_var: str) -> Optional[PathList]:
        value = os.environ.get(env_var)
        if not value:
            logger.warning(f"{env_var} not defined in the environment.")
            return None

        cwd = self.ctx.fs.current_directory()
        dirs: list[str] = []
        # ";;" stands for the built-in default path, which is not listed
        for template in split_env_var(env_var, value, separator=";", conv_cygdrive=False):
            if self.ctx.ignore.lookup("Lua", template):
                continue
            directory = template_directory(template, cwd)
            if directory is None:
                if template != cwd:
                    logger.warning(f'{env_var}: path-element "{template}" has no "?" pattern')
                    continue
                directory = cwd
            if self.ctx.ignore.lookup("Lua", directory):
                continue
            dirs.append(directory)

        return build_path_list(
            owner=env_var,
            raw_paths=dirs,
            fs=self.ctx.fs,
            case_sensitive=self.ctx.case_sensitive,
            list_name=env_var,
            deduplicate=True,
        )

    def lua_info(self) -> Optional[InterpreterRecord]:
        """Location and version of ``lua`` (or ``luajit``) on PATH."""
        if self._info is not None:
            return self._info

        cache = self.ctx.cache
        variant = InterpreterVariant.LUAJIT if self.prefer_luajit else InterpreterVariant.LUA
        exe, version = None, None

        cached_jit = cache.getf(CACHE_SECTION, "luajit.enable = %d")
        if cached_jit == (int(self.prefer_luajit),):
            exe = cache.get(CACHE_SECTION, "lua_exe")
            fields = cache.getf(CACHE_SECTION, "lua_version = %d,%d,%d")
            version = fields if len(fields) == 3 else None
        if exe and not self.ctx.fs.exists(exe):
            logger.debug(f"Cached Lua interpreter '{exe}' is stale")
            exe, version = None, None

        if exe is None:
            cache.delete(CACHE_SECTION, "lua_exe")
            cache.delete(CACHE_SECTION, "lua_version")
            exe = searchpath(variant.value)
            if exe is None:
                logger.debug(f"No {variant.value} on PATH")
                return None
            cache.put(CACHE_SECTION, "lua_exe", exe)
            cache.putf(CACHE_SECTION, "luajit.enable = %d", int(self.prefer_luajit))

        if version is None:
            version = self._probe_version(exe)
            if version is not None:
                cache.putf(CACHE_SECTION, "lua_version = %d,%d,%d", *version)

        self._info = InterpreterRecord(variant=variant, executable=exe, version=version)
        return self._info

    def _probe_version(self, exe: str) -> Optional[tuple[int, int, int]]:
        with self.ctx.env_stack.suppressed(["LUA_TRACE", "LUAJIT_TRACE"]):
            try:
                result = self.ctx.runner.spawn(exe, ["-v"], timeout=self.ctx.timeout)
            except ProbeError as e:
                logger.warning(f"Cannot run {exe}: {e.context}")
                return None
        version = parse_lua_version(result.all_lines, self.prefer_luajit)
        if version is None:
            logger.warning(f"Could not get the version of {exe}")
        return version
