"""
Reader for the INI-like files envseek uses.

Both the user config (``envseek.cfg``) and the cache file share this format::

    # comment
    key = value        ; trailing comment
    [Section]
    ignore = "c:\\Program Files (x86)\\some dir\\ipy.exe"

Keys before the first ``[Section]`` header belong to the global section
(``None``). Malformed lines are logged and skipped.
"""

import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from envseek.core.errors import ConfigMalformedError

logger = logging.getLogger(__name__)

# Characters allowed inside a quoted value besides letters and digits
QUOTED_PUNCTUATION = "-_ :()\\/.^"

_SECTION_RE = re.compile(r"^\[\s*([^\]\s][^\]]*?)\s*\]$")
_KEY_VALUE_RE = re.compile(r"^([A-Za-z0-9_.+\-]+)\s*=\s*(.*)$")
_QUOTED_RE = re.compile(r'^"([^"]*)"')


@dataclass(frozen=True)
class CfgEntry:
    """One ``key = value`` line."""

    section: Optional[str]
    key: str
    value: str
    line_number: int


def _strip_comment(value: str) -> str:
    """Cut a trailing ``#`` or ``;`` comment that follows whitespace."""
    for i, c in enumerate(value):
        if c in "#;" and (i == 0 or value[i - 1] in " \t"):
            return value[:i].rstrip()
    return value.strip()


def _valid_quoted(value: str) -> bool:
    return all(c.isalnum() or c in QUOTED_PUNCTUATION for c in value)


def parse_value(raw: str) -> Optional[str]:
    """
    Parse the right-hand side of ``key = value``.

    Returns:
        The value with quotes and comments removed, or None if a quoted value
        is unterminated or contains characters outside the allowed set
    """
    raw = raw.strip()
    if raw.startswith('"'):
        m = _QUOTED_RE.match(raw)
        if not m or not _valid_quoted(m.group(1)):
            return None
        rest = raw[m.end():].strip()
        if rest and rest[0] not in "#;":
            return None
        return m.group(1)
    return _strip_comment(raw)


def parse_lines(
    lines: list[str],
    source: str = "<string>",
    strict: bool = False,
    inline_comments: bool = True,
) -> Iterator[CfgEntry]:
    """
    Parse lines of an INI-like file.

    Args:
        lines: Lines without trailing newlines
        source: Name used in warnings
        strict: Raise ConfigMalformedError instead of logging and skipping
        inline_comments: When False, values are taken verbatim (cache files)

    Yields:
        CfgEntry for each well-formed ``key = value`` line
    """
    section: Optional[str] = None
    for number, line in enumerate(lines, start=1):
        stripped = line.strip()
        if not stripped or stripped[0] in "#;":
            continue

        m = _SECTION_RE.match(_strip_comment(stripped))
        if m:
            section = m.group(1)
            continue

        m = _KEY_VALUE_RE.match(stripped)
        if m is None:
            value = None
        elif inline_comments:
            value = parse_value(m.group(2))
        else:
            value = m.group(2).strip()
        if m is None or value is None:
            if strict:
                raise ConfigMalformedError(source, number, stripped)
            logger.warning(f"{source}({number}): skipping malformed line '{stripped}'")
            continue

        yield CfgEntry(section=section, key=m.group(1), value=value, line_number=number)


def read_cfg_file(path: Path | str) -> list[CfgEntry]:
    """
    Read and parse a config file.

    A missing or unreadable file yields an empty list.
    """
    path = Path(path)
    if not path.is_file():
        logger.debug(f"Config file not found: {path}")
        return []
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        logger.warning(f"Error reading {path}: {e}")
        return []
    return list(parse_lines(content.splitlines(), source=str(path)))
