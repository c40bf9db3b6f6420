"""
Console reporting for search results.

ConsoleReporter is the report callback handed to the search driver. It
prints section headers and one line per match on stdout:

    Matches in %PATH:
          12 Mar 2024 - 10:02:11: /usr/bin/python3
     (5)  01 Jan 2023 - 00:00:00: /site/pkg.egg!pkg/__init__.py
"""

import time

from rich.console import Console
from rich.markup import escape

from envseek.core.models import MatchKind, MatchRecord, ReportEvent, SectionHeader
from envseek.core.path_utils import to_display

_FILLER = "      "
_ARCHIVE_NOTE = " (5)  "
_TIME_FORMAT = "%d %b %Y - %H:%M:%S"


def format_size(size: int) -> str:
    """Human-readable file size: ``512 B``, ``1.5 kB``, ``3.2 MB``."""
    value = float(size)
    for unit in ("B", "kB", "MB", "GB"):
        if value < 1024 or unit == "GB":
            return f"{int(value)} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} GB"


def format_time(mtime: float) -> str:
    if mtime <= 0:
        return "?"
    return time.strftime(_TIME_FORMAT, time.localtime(mtime))


def match_summary(count: int, pattern: str) -> str:
    """The closing line of a search."""
    noun = "match" if count == 1 else "matches"
    return f'{count} {noun} found for "{pattern}".'


class ConsoleReporter:
    """Prints report events with rich."""

    def __init__(self, console: Console, show_unix_paths: bool = False, show_size: bool = False):
        self.console = console
        self.show_unix_paths = show_unix_paths
        self.show_size = show_size
        self.count = 0
        self.archive_matches = 0

    def _print(self, text: str) -> None:
        self.console.print(text, soft_wrap=True, highlight=False)

    def __call__(self, event: ReportEvent) -> None:
        if isinstance(event, SectionHeader):
            self._print(f"[cyan]{escape(event.title)}[/cyan]")
            return
        self.report_match(event)

    def _display_path(self, record: MatchRecord) -> str:
        if record.kind is MatchKind.ARCHIVE_ENTRY:
            archive, _, member = record.path.partition("!")
            return f"{to_display(archive, self.show_unix_paths)}!{member}"
        path = to_display(record.path, self.show_unix_paths)
        if record.kind is MatchKind.DIRECTORY and not path.endswith(("/", "\\")):
            path += "/" if self.show_unix_paths or "/" in path else "\\"
        return path

    def report_match(self, record: MatchRecord) -> None:
        self.count += 1
        note = _FILLER
        if record.kind is MatchKind.ARCHIVE_ENTRY:
            note = _ARCHIVE_NOTE
            self.archive_matches += 1

        size = ""
        if self.show_size and record.size > 0:
            size = f" - {format_size(record.size)}"

        self._print(
            f"[cyan]{note}[/cyan]{format_time(record.mtime)}{size}: {escape(self._display_path(record))}"
        )
        if record.content_match is not None:
            hit = record.content_match
            more = f" (+{hit.total_hits - 1} more)" if hit.total_hits > 1 else ""
            self._print(f"        [dim]{hit.line_number}:[/dim] {escape(hit.line)}{more}")

    def finish(self, pattern: str) -> None:
        """Print the footnotes and the match count."""
        if self.archive_matches:
            self._print("")
            self._print("[cyan] (5): found in a .zip/.egg in 'sys.path[]'.[/cyan]")
        self._print(match_summary(self.count, pattern))
