"""
Persistent probe cache for envseek.

A plain text file of ``[Section]`` blocks and ``key = csv-values`` lines::

    [Compiler]
    compiler_exe_0 = 0,0,64,C_INCLUDE_PATH,LIBRARY_PATH,gcc,/usr/bin/gcc
    compiler_inc_0_0 = 0,/usr/lib/gcc/x86_64-linux-gnu/12/include

The file is read once by load(); updates accumulate in memory and flush()
rewrites it atomically if anything changed. The cache is advisory: callers
check that cached paths still exist and delete stale keys.
"""

import logging
import os
import re
import shutil
from collections.abc import Iterator
from pathlib import Path
from typing import Any, Optional

from envseek.core.cfg_file import parse_lines
from envseek.core.errors import CacheError

logger = logging.getLogger(__name__)

SECTIONS: tuple[str, ...] = ("Compiler", "Env-dir", "Lua", "Python", "Test")

_CONVERSION_RE = re.compile(r"%[dusf]")


def _split_format(fmt: str) -> tuple[str, list[str]]:
    """Split ``"key_%d = %d,%s"`` into the key template and the value conversions."""
    key_fmt, sep, value_fmt = fmt.partition("=")
    if not sep:
        raise ValueError(f"Cache format without '=': '{fmt}'")
    conversions = [c.strip() for c in value_fmt.split(",")]
    for conv in conversions:
        if conv not in ("%d", "%u", "%s", "%f"):
            raise ValueError(f"Unsupported conversion '{conv}' in '{fmt}'")
    return key_fmt.strip(), conversions


def _format_key(key_fmt: str, args: tuple[Any, ...]) -> str:
    return key_fmt.replace("%u", "%d") % args if args else key_fmt


def _key_arg_count(key_fmt: str) -> int:
    return len(_CONVERSION_RE.findall(key_fmt))


def _convert(conv: str, text: str) -> Any:
    text = text.strip()
    if conv == "%d":
        return int(text)
    if conv == "%u":
        value = int(text)
        if value < 0:
            raise ValueError(f"negative value for %u: {text}")
        return value
    if conv == "%f":
        return float(text)
    return text


def _render(conv: str, value: Any) -> str:
    if conv in ("%d", "%u"):
        return str(int(value))
    if conv == "%f":
        return repr(float(value))
    return str(value)


class PersistentCache:
    """
    Section-scoped key/value store backed by a text file.

    A disabled cache answers every lookup with "not found" and never writes.
    """

    def __init__(self, path: Path | str, enabled: bool = True, keep_prev: bool = True):
        """
        Args:
            path: Cache file location
            enabled: False turns every operation into a no-op
            keep_prev: Keep the replaced file as ``<name>-prev`` on flush
        """
        self.path = Path(path)
        self.enabled = enabled
        self.keep_prev = keep_prev
        self._data: dict[str, dict[str, str]] = {}
        self._dirty = False
        self._loaded = False

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def prev_path(self) -> Path:
        return self.path.with_name(self.path.name + "-prev")

    def load(self) -> int:
        """
        Read the cache file.

        A missing file is an empty cache. Malformed lines are skipped.

        Returns:
            Number of entries loaded
        """
        self._data = {}
        self._dirty = False
        self._loaded = True
        if not self.enabled:
            return 0
        try:
            content = self.path.read_text(encoding="utf-8", errors="replace")
        except FileNotFoundError:
            logger.debug(f"No cache file at {self.path}")
            return 0
        except OSError as e:
            logger.warning(f"Cannot read cache {self.path}: {e}")
            return 0

        count = 0
        for entry in parse_lines(content.splitlines(), source=str(self.path), inline_comments=False):
            if entry.section is None:
                logger.debug(f"{self.path}({entry.line_number}): key outside any section")
                continue
            self._data.setdefault(entry.section, {})[entry.key] = entry.value
            count += 1
        logger.debug(f"Loaded {count} cache entries from {self.path}")
        return count

    def get(self, section: str, key: str) -> Optional[str]:
        if not self.enabled:
            return None
        return self._data.get(section, {}).get(key)

    def getf(self, section: str, fmt: str, *key_args: Any) -> tuple[Any, ...]:
        """
        Look up a key and parse its comma-separated value.

        Args:
            section: Cache section
            fmt: printf-like ``"key = conversions"`` string, e.g.
                ``"compiler_exe_%d = %d,%d,%s"``. Conversions are ``%d``,
                ``%u``, ``%f`` and ``%s``; only the last ``%s`` may contain commas.
            *key_args: Values for the conversions in the key part

        Returns:
            The parsed fields. Fewer fields than requested means a partial
            parse; an empty tuple means the key is absent.
        """
        key_fmt, conversions = _split_format(fmt)
        value = self.get(section, _format_key(key_fmt, key_args))
        if value is None:
            return ()

        fields = value.split(",", len(conversions) - 1)
        parsed: list[Any] = []
        for conv, text in zip(conversions, fields):
            try:
                parsed.append(_convert(conv, text))
            except ValueError:
                break
        return tuple(parsed)

    def put(self, section: str, key: str, value: Any) -> None:
        if not self.enabled:
            return
        text = str(value)
        if "\n" in text or "\r" in text:
            raise CacheError(f"Cache value for '{key}' contains a line break")
        entries = self._data.setdefault(section, {})
        if entries.get(key) != text:
            entries[key] = text
            self._dirty = True

    def putf(self, section: str, fmt: str, *args: Any) -> None:
        """
        Format and store an entry.

        The leading arguments fill the key part of ``fmt``, the rest the
        value part, e.g. ``putf("Python", "python_home_%d = %s", 0, home)``.
        """
        key_fmt, conversions = _split_format(fmt)
        n_key = _key_arg_count(key_fmt)
        key_args, values = args[:n_key], args[n_key:]
        if len(values) != len(conversions):
            raise ValueError(
                f"'{fmt}' expects {len(conversions)} values, got {len(values)}"
            )
        rendered = ",".join(_render(c, v) for c, v in zip(conversions, values))
        self.put(section, _format_key(key_fmt, key_args), rendered)

    def delete(self, section: str, key: str) -> bool:
        entries = self._data.get(section, {})
        if key in entries:
            del entries[key]
            self._dirty = True
            return True
        return False

    def delete_prefix(self, section: str, prefix: str) -> int:
        """Delete every key in a section that starts with prefix."""
        entries = self._data.get(section, {})
        doomed = [k for k in entries if k.startswith(prefix)]
        for key in doomed:
            del entries[key]
        if doomed:
            self._dirty = True
        return len(doomed)

    def keys(self, section: str) -> list[str]:
        return list(self._data.get(section, {})) if self.enabled else []

    def iter_indexed(self, section: str, prefix: str) -> Iterator[str]:
        """Yield ``prefix0``, ``prefix1``, ... until a lookup fails."""
        index = 0
        while True:
            value = self.get(section, f"{prefix}{index}")
            if value is None:
                return
            yield value
            index += 1

    def _render_file(self) -> str:
        lines = ["# envseek cache. Entries are rebuilt automatically when stale.", ""]
        ordered = [s for s in SECTIONS if s in self._data]
        ordered += [s for s in self._data if s not in SECTIONS]
        for section in ordered:
            entries = self._data[section]
            if not entries:
                continue
            lines.append(f"[{section}]")
            lines.extend(f"{key} = {value}" for key, value in entries.items())
            lines.append("")
        return "\n".join(lines)

    def flush(self) -> bool:
        """
        Rewrite the cache file if anything changed.

        The new content goes to a temporary file in the same directory which
        then replaces the old file.

        Returns:
            True if the file was written

        Raises:
            CacheError: If the file cannot be written
        """
        if not self.enabled or not self._dirty:
            return False

        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(self._render_file(), encoding="utf-8")
            if self.keep_prev and self.path.exists():
                shutil.copyfile(self.path, self.prev_path)
            os.replace(tmp, self.path)
        except OSError as e:
            if tmp.exists():
                tmp.unlink()
            raise CacheError(f"Cannot write cache {self.path}: {e}") from e

        self._dirty = False
        logger.debug(f"Wrote cache {self.path}")
        return True
