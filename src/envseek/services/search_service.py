"""
Search driver for envseek.

Runs one search across the selected domains in a fixed order: environment
variables, compiler include directories, compiler library directories,
interpreter module paths and the Lua paths. Each path list is searched by
the PathListMatcher and its matches are handed to the report callback
behind a section header.
"""

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Optional

from envseek.core.content_grep import ContentGrep, GrepMode
from envseek.core.errors import CacheError
from envseek.core.glob_matcher import GlobPattern
from envseek.core.models import (
    CompilerRecord,
    InterpreterRecord,
    InterpreterSelector,
    ModuleRecord,
    PathList,
    SectionHeader,
)
from envseek.infrastructure.embedded import ChildInterpreterRuntime, EmbeddedRuntime
from envseek.probes.base import ProbeContext
from envseek.probes.compiler import CompilerProbe
from envseek.probes.interpreter import InterpreterProbe
from envseek.probes.lua import LuaProbe
from envseek.services.container import ServicesContainer
from envseek.services.env_search import EnvVarSearch, env_header
from envseek.services.matcher import MatchOptions, PathListMatcher
from envseek.services.search_types import (
    ReportCallback,
    RunSummary,
    SearchCommand,
    SearchDomain,
    SearchFlags,
    fix_filespec,
)

logger = logging.getLogger(__name__)


@dataclass
class _SearchTarget:
    """One path list to search, with the title of its section."""

    title: str
    paths: PathList
    ignore_section: Optional[str] = None
    name_filter: Optional[GlobPattern] = None


@dataclass
class _Probes:
    ctx: ProbeContext
    compilers: CompilerProbe
    interpreters: InterpreterProbe
    lua: LuaProbe


class SearchDriver:
    """
    Orchestrates a search run.

    The ignore registry and the cache are loaded once per driver; the cache
    is flushed and any embedded interpreter finalised when a run ends, even
    when it ends with an exception.
    """

    def __init__(
        self,
        services: ServicesContainer,
        runtime_factory: Callable[[], EmbeddedRuntime] = ChildInterpreterRuntime,
        allow_embedded: bool = True,
    ):
        """
        Args:
            services: Configuration, filesystem, runner, ignore registry and cache
            runtime_factory: Creates the embedded interpreter runtime
            allow_embedded: False forces external interpreter probes
        """
        self.services = services
        self.runtime_factory = runtime_factory
        self.allow_embedded = allow_embedded
        self._loaded = False

    def _load(self) -> None:
        if self._loaded:
            return
        loaded = self.services.ignore.add_entries(self.services.cfg_entries)
        logger.debug(f"Loaded {loaded} ignore rules from {self.services.config_path}")
        if self.services.cache.enabled:
            self.services.cache.load()
        self._loaded = True

    def _flush_cache(self) -> None:
        try:
            self.services.cache.flush()
        except CacheError as e:
            logger.warning(str(e))

    def _make_probes(self, flags: SearchFlags) -> _Probes:
        s = self.services
        ctx = ProbeContext(
            fs=s.fs,
            runner=s.runner,
            ignore=s.ignore,
            cache=s.cache,
            config=s.config,
            env_stack=s.env_stack,
            case_sensitive=flags.case_sensitive,
            keep_temp=flags.keep_temp,
        )
        return _Probes(
            ctx=ctx,
            compilers=CompilerProbe(
                ctx,
                excluded=flags.excluded_families,
                no_prefix=flags.no_prefix,
                bitness=flags.bitness,
            ),
            interpreters=InterpreterProbe(
                ctx,
                runtime_factory=self.runtime_factory,
                allow_embedded=self.allow_embedded,
            ),
            lua=LuaProbe(ctx),
        )

    @contextmanager
    def _session(self, flags: SearchFlags) -> Iterator[_Probes]:
        """Load state, hand out the probes, then flush the cache and finalise."""
        self._load()
        probes = self._make_probes(flags)
        try:
            yield probes
        finally:
            probes.interpreters.close()
            self._flush_cache()

    # Searching

    def run(self, command: SearchCommand, report: ReportCallback) -> RunSummary:
        """
        Search every selected domain.

        Args:
            command: Pattern, domains and flags
            report: Called with a SectionHeader before the first match of a
                path list, then with each MatchRecord

        Returns:
            RunSummary with the match count

        Raises:
            PatternSyntaxError: If the pattern is ill-formed
            ContentGrepError: If the grep query is empty or an invalid regex
        """
        flags = command.flags
        subdir, file_spec = fix_filespec(command.pattern)
        pattern = GlobPattern.compile(file_spec, case_sensitive=flags.case_sensitive)
        grep = None
        if flags.grep is not None:
            grep = ContentGrep(
                flags.grep,
                mode=GrepMode.REGEX if flags.grep_regex else GrepMode.SUBSTRING,
                case_sensitive=bool(flags.case_sensitive),
                max_matches=self.services.config.grep.max_matches,
            )
        logger.debug(f"Searching for '{file_spec}' (sub-dir '{subdir}')")

        summary = RunSummary(pattern=command.pattern)
        matcher = PathListMatcher(self.services.fs, self.services.ignore)

        with self._session(flags) as probes:
            for target in self._targets(command, probes):
                summary.lists_searched += 1
                options = MatchOptions(
                    pattern=pattern,
                    subdir=subdir,
                    recursive=flags.recursive,
                    max_depth=self.services.config.matcher.max_depth,
                    dir_mode=flags.dir_mode,
                    grep=grep,
                    name_filter=target.name_filter,
                    ignore_section=target.ignore_section,
                )
                header_sent = False
                for record in matcher.match(target.paths, options):
                    if not header_sent:
                        report(SectionHeader(title=target.title))
                        summary.sections.append(target.title)
                        header_sent = True
                    report(record)
                    summary.matches += 1

        logger.debug(f"{summary.matches} matches in {summary.lists_searched} path lists")
        return summary

    def _targets(self, command: SearchCommand, probes: _Probes) -> Iterator[_SearchTarget]:
        """Path lists of the selected domains, built lazily in domain order."""
        domains = command.domains
        env_search = EnvVarSearch(self.services.fs, case_sensitive=command.flags.case_sensitive)

        env_vars: list[str] = []
        if SearchDomain.PATH in domains:
            env_vars.append("PATH")
        if SearchDomain.LIBRARY in domains:
            env_vars.append("LIB")
        if SearchDomain.INCLUDE in domains:
            env_vars.append("INCLUDE")
        env_vars += [v for v in command.env_vars if v not in env_vars]

        for env_var in env_vars:
            plist = env_search.path_list(env_var)
            if plist is not None:
                yield _SearchTarget(title=env_header(env_var), paths=plist)

        if SearchDomain.INCLUDE in domains:
            for record in self._active_compilers(probes):
                yield _SearchTarget(
                    title=f"Matches in {record.display_name} %{record.include_env}% path:",
                    paths=probes.compilers.include_paths(record),
                )

        if SearchDomain.LIBRARY in domains:
            for record in self._active_compilers(probes):
                yield _SearchTarget(
                    title=f"Matches in {record.display_name} %{record.library_env}% path:",
                    paths=probes.compilers.library_paths(record),
                )

        if SearchDomain.PYTHON in domains:
            for record in probes.interpreters.select(command.interpreter_selector):
                plist = probes.interpreters.module_search_path(record)
                if record.probe_failed:
                    continue
                yield _SearchTarget(
                    title=f'Matches in "{record.display_name}" sys.path[]:',
                    paths=plist,
                )

        if SearchDomain.LUA in domains:
            for lua_list in probes.lua.search_lists():
                yield _SearchTarget(
                    title=f"Matches in %{lua_list.env_var}:",
                    paths=lua_list.paths,
                    ignore_section="Lua",
                    name_filter=lua_list.name_filter,
                )

    @staticmethod
    def _active_compilers(probes: _Probes) -> list[CompilerRecord]:
        return [r for r in probes.compilers.discover() if not r.ignored]

    # Inventories

    def compiler_inventory(self, flags: Optional[SearchFlags] = None) -> list[CompilerRecord]:
        """Every compiler on PATH, probed unless ignored."""
        with self._session(flags or SearchFlags()) as probes:
            records = probes.compilers.compiler_info()
            for record in records:
                probes.compilers.probe(record)
            return records

    def interpreter_inventory(self, flags: Optional[SearchFlags] = None) -> list[InterpreterRecord]:
        """Every Python interpreter on PATH with its module search path, then Lua."""
        with self._session(flags or SearchFlags()) as probes:
            records = list(probes.interpreters.interpreter_info())
            for record in records:
                probes.interpreters.module_search_path(record)
            lua = probes.lua.lua_info()
            if lua is not None:
                records.append(lua)
            return records

    def module_inventory(
        self,
        selector: InterpreterSelector = InterpreterSelector.DEFAULT,
        flags: Optional[SearchFlags] = None,
    ) -> list[tuple[InterpreterRecord, list[ModuleRecord]]]:
        """Installed distributions of the selected interpreters."""
        with self._session(flags or SearchFlags()) as probes:
            return [
                (record, probes.interpreters.list_modules(record))
                for record in probes.interpreters.select(selector)
            ]
