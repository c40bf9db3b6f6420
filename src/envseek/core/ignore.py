"""
Ignore registry for envseek.

Holds the ``ignore = PATTERN`` rules of the config file, grouped by section:

    [Compiler]
      ignore = i386-mingw32-gcc.exe
    [Python]
      ignore = "c:\\Program Files (x86)\\IronPython\\ipy.exe"

Lookups are case-insensitive. A rule naming a full path (leading slash or
drive letter) only matches full paths; other rules also match basenames.
"""

import logging
import ntpath
import posixpath
from collections.abc import Iterator
from pathlib import Path
from typing import Optional

from envseek.core.cfg_file import CfgEntry, read_cfg_file
from envseek.core.errors import PatternSyntaxError
from envseek.core.glob_matcher import GlobPattern
from envseek.core.models import IgnoreRule
from envseek.core.path_utils import expand_env

logger = logging.getLogger(__name__)

# Sections consulted by the core
CORE_SECTIONS: tuple[str, ...] = ("Compiler", "Python", "Lua", "Registry", "PE-resources")

# Sections the config file may legitimately carry for other features
KNOWN_SECTIONS: tuple[str, ...] = CORE_SECTIONS + ("Path", "Shadow", "EveryThing", "Login")

_SEPARATORS = frozenset({"/", "\\"})


def normalize_section(section: str) -> str:
    """Accept ``Python`` or ``[Python]`` and return ``Python``."""
    section = section.strip()
    if section.startswith("[") and section.endswith("]"):
        section = section[1:-1].strip()
    return section


def _basename(value: str) -> str:
    return ntpath.basename(posixpath.basename(value)) if value else value


class IgnoreRegistry:
    """
    Section-scoped ignore rules.

    Rules in unknown sections are kept (and reported once) but never
    consulted by lookup().
    """

    def __init__(self) -> None:
        self._rules: list[IgnoreRule] = []
        self._compiled: dict[IgnoreRule, Optional[GlobPattern]] = {}
        self._unknown_sections: set[str] = set()
        self._known = {s.casefold(): s for s in KNOWN_SECTIONS}

    def __len__(self) -> int:
        return len(self._rules)

    def _canonical_section(self, section: str) -> Optional[str]:
        return self._known.get(normalize_section(section).casefold())

    def add(self, section: str, pattern: str) -> IgnoreRule:
        """
        Add a rule.

        Args:
            section: Section name, with or without brackets
            pattern: Glob pattern or literal value; environment references are expanded

        Returns:
            The stored IgnoreRule
        """
        name = normalize_section(section)
        known = self._canonical_section(name)
        if known is None:
            if name.casefold() not in self._unknown_sections:
                logger.warning(f"Ignoring unknown section: [{name}].")
                self._unknown_sections.add(name.casefold())
        else:
            name = known

        rule = IgnoreRule(section=name, pattern=expand_env(pattern.strip()))
        self._rules.append(rule)
        try:
            self._compiled[rule] = GlobPattern.compile(
                rule.pattern.replace("\\", "/"), case_sensitive=False, path_mode=True
            )
        except PatternSyntaxError as e:
            logger.warning(f"[{name}]: ignore pattern '{pattern}' kept as a literal: {e.reason}")
            self._compiled[rule] = None
        logger.debug(f"[{name}]: ignore = '{rule.pattern}'")
        return rule

    def add_entries(self, entries: list[CfgEntry]) -> int:
        """Add the ``ignore`` entries of a parsed config file; return how many."""
        added = 0
        for entry in entries:
            if entry.key.casefold() != "ignore":
                continue
            if entry.section is None:
                logger.warning(f"line {entry.line_number}: 'ignore' outside any section")
                continue
            if not entry.value:
                logger.warning(f"[{entry.section}] line {entry.line_number}: empty ignore value")
                continue
            self.add(entry.section, entry.value)
            added += 1
        return added

    def load(self, config_path: Path | str | None) -> int:
        """
        Load rules from a config file.

        A missing file is not an error. The search driver instead hands over
        the entries create_services already parsed (add_entries).

        Returns:
            Number of rules loaded
        """
        if config_path is None:
            return 0
        loaded = self.add_entries(read_cfg_file(config_path))
        logger.debug(f"Loaded {loaded} ignore rules from {config_path}")
        return loaded

    def rules(self, section: str) -> list[IgnoreRule]:
        name = normalize_section(section).casefold()
        return [r for r in self._rules if r.section.casefold() == name]

    def iter_section(self, section: str) -> Iterator[str]:
        """Iterate the patterns of one section in file order."""
        for rule in self.rules(section):
            yield rule.pattern

    def _rule_matches(self, rule: IgnoreRule, value: str) -> bool:
        candidates = [value]
        if not rule.anchored:
            base = _basename(value)
            if base and base != value:
                candidates.append(base)

        for candidate in candidates:
            if candidate.casefold() == rule.pattern.casefold():
                return True
            compiled = self._compiled.get(rule)
            if compiled is not None and compiled.match(candidate.replace("\\", "/")):
                return True
        return False

    def lookup(self, section: str, value: str) -> bool:
        """
        Check whether a value is ignored in a section.

        Args:
            section: Section name, with or without brackets
            value: Full path or basename to test

        Returns:
            True if any rule of that section matches, case-insensitively
        """
        known = self._canonical_section(section)
        if known is None or not value:
            return False
        for rule in self._rules:
            if rule.section != known:
                continue
            if self._rule_matches(rule, value):
                logger.debug(f"'{value}' is ignored by [{known}] '{rule.pattern}'")
                return True
        return False
