"""
Content matching for grep mode.

When the user passes ``--grep TEXT``, a file only counts as a match if its
content contains TEXT (substring or regular expression).
"""

import logging
import re
from enum import Enum
from typing import Optional

from envseek.core.errors import EnvseekError
from envseek.core.models import ContentMatch

logger = logging.getLogger(__name__)

_BINARY_PROBE_SIZE = 8192
_MAX_LINE_DISPLAY = 200


class ContentGrepError(EnvseekError):
    """Invalid grep query."""

    pass


class GrepMode(str, Enum):
    """How the grep query is interpreted."""

    SUBSTRING = "substring"
    REGEX = "regex"


class ContentGrep:
    """Searches file contents line by line."""

    def __init__(
        self,
        query: str,
        mode: GrepMode = GrepMode.SUBSTRING,
        case_sensitive: bool = False,
        max_matches: int = 5,
    ):
        """
        Args:
            query: Text or regular expression to look for
            mode: Substring or regex
            case_sensitive: Whether to match case
            max_matches: Stop counting hits in a file after this many

        Raises:
            ContentGrepError: If the query is empty or not a valid regex
        """
        if not query:
            raise ContentGrepError("Empty grep query")
        self.query = query
        self.mode = mode
        self.case_sensitive = case_sensitive
        self.max_matches = max(1, max_matches)

        flags = 0 if case_sensitive else re.IGNORECASE
        try:
            if mode is GrepMode.REGEX:
                self._regex = re.compile(query, flags)
            else:
                self._regex = re.compile(re.escape(query), flags)
        except re.error as e:
            raise ContentGrepError(f"Invalid regex '{query}': {e}") from e

    @staticmethod
    def _is_binary(chunk: bytes) -> bool:
        return b"\x00" in chunk

    def search_text(self, text: str) -> Optional[ContentMatch]:
        """Return the first hit in a block of text, with the total hit count."""
        first: Optional[tuple[int, str, str]] = None
        hits = 0
        for number, line in enumerate(text.splitlines(), start=1):
            m = self._regex.search(line)
            if not m:
                continue
            hits += 1
            if first is None:
                first = (number, line.strip()[:_MAX_LINE_DISPLAY], m.group(0))
            if hits >= self.max_matches:
                break
        if first is None:
            return None
        return ContentMatch(line_number=first[0], line=first[1], matched=first[2], total_hits=hits)

    def search_file(self, path: str) -> Optional[ContentMatch]:
        """
        Search one file.

        Binary and unreadable files never match.
        """
        try:
            with open(path, "rb") as f:
                head = f.read(_BINARY_PROBE_SIZE)
                if self._is_binary(head):
                    logger.debug(f"Skipping binary file in grep mode: {path}")
                    return None
                data = head + f.read()
        except OSError as e:
            logger.debug(f"Cannot read {path} for grep: {e}")
            return None
        return self.search_text(data.decode("utf-8", errors="replace"))
