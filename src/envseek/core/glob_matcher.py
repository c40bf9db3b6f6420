"""
Shell-style wildcard matching.

Supports ``*``, ``?`` and ``[set]`` (with ``!``/``^`` negation and ``a-z``
ranges). Matching runs a dynamic program over (token, text position), so the
cost is O(len(pattern) * len(text)) whatever the input.
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from envseek.core.errors import PatternSyntaxError
from envseek.core.models import default_case_sensitive

WILDCARD_CHARS = frozenset("*?[")

DEFAULT_SEPARATORS: frozenset[str] = frozenset({"/", os.sep})


class _TokenType(Enum):
    LITERAL = 1
    ANY = 2
    STAR = 3
    SET = 4


@dataclass(frozen=True)
class _Token:
    type: _TokenType
    char: str = ""
    ranges: tuple[tuple[str, str], ...] = ()
    negated: bool = False


def has_wildcards(pattern: str) -> bool:
    """True if the pattern contains any glob operator."""
    return any(c in WILDCARD_CHARS for c in pattern)


def _parse_set(pattern: str, start: int, escape: bool) -> tuple[_Token, int]:
    """
    Parse a ``[...]`` set whose ``[`` is at ``start``.

    Returns:
        The SET token and the index just past the closing ``]``
    """
    i = start + 1
    negated = False
    if i < len(pattern) and pattern[i] in "!^":
        negated = True
        i += 1

    ranges: list[tuple[str, str]] = []
    first = True
    while i < len(pattern):
        c = pattern[i]
        if c == "]" and not first:
            return _Token(_TokenType.SET, ranges=tuple(ranges), negated=negated), i + 1
        first = False
        if escape and c == "\\" and i + 1 < len(pattern):
            i += 1
            c = pattern[i]
        if i + 2 < len(pattern) and pattern[i + 1] == "-" and pattern[i + 2] != "]":
            hi = pattern[i + 2]
            if hi < c:
                raise PatternSyntaxError(pattern, f"reversed range '{c}-{hi}'")
            ranges.append((c, hi))
            i += 3
        else:
            ranges.append((c, c))
            i += 1
    raise PatternSyntaxError(pattern, "unterminated '['")


def _tokenize(pattern: str, escape: bool) -> list[_Token]:
    tokens: list[_Token] = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "*":
            # Consecutive stars behave like one
            if not tokens or tokens[-1].type is not _TokenType.STAR:
                tokens.append(_Token(_TokenType.STAR))
            i += 1
        elif c == "?":
            tokens.append(_Token(_TokenType.ANY))
            i += 1
        elif c == "[":
            token, i = _parse_set(pattern, i, escape)
            tokens.append(token)
        elif escape and c == "\\":
            if i + 1 >= len(pattern):
                raise PatternSyntaxError(pattern, "trailing escape character")
            tokens.append(_Token(_TokenType.LITERAL, char=pattern[i + 1]))
            i += 2
        else:
            tokens.append(_Token(_TokenType.LITERAL, char=c))
            i += 1
    return tokens


class GlobPattern:
    """
    A compiled glob pattern.

    Use GlobPattern.compile() and then match() against candidate names.
    """

    def __init__(
        self,
        pattern: str,
        tokens: list[_Token],
        case_sensitive: bool,
        path_mode: bool,
        separators: frozenset[str],
    ):
        self.pattern = pattern
        self._tokens = tokens
        self.case_sensitive = case_sensitive
        self.path_mode = path_mode
        self._separators = separators

    @classmethod
    def compile(
        cls,
        pattern: str,
        case_sensitive: Optional[bool] = None,
        path_mode: bool = False,
        escape: bool = False,
        separators: Optional[frozenset[str]] = None,
    ) -> "GlobPattern":
        """
        Compile a glob pattern.

        Args:
            pattern: The shell-style pattern
            case_sensitive: None picks the platform default
            path_mode: When True, no wildcard matches a path separator
            escape: When True, a backslash quotes the next character
            separators: Characters treated as path separators in path mode

        Raises:
            PatternSyntaxError: If the pattern is empty or ill-formed
        """
        if not pattern:
            raise PatternSyntaxError(pattern, "empty pattern")
        if case_sensitive is None:
            case_sensitive = default_case_sensitive()
        tokens = _tokenize(pattern, escape)
        return cls(pattern, tokens, case_sensitive, path_mode, separators or DEFAULT_SEPARATORS)

    def __repr__(self) -> str:
        return (
            f"GlobPattern({self.pattern!r}, case_sensitive={self.case_sensitive}, "
            f"path_mode={self.path_mode})"
        )

    @property
    def is_literal(self) -> bool:
        return all(t.type is _TokenType.LITERAL for t in self._tokens)

    def _char_equal(self, a: str, b: str) -> bool:
        if a == b:
            return True
        if self.case_sensitive:
            return False
        return a.casefold() == b.casefold()

    def _in_set(self, token: _Token, c: str) -> bool:
        candidates = (c,) if self.case_sensitive else (c, c.lower(), c.upper())
        hit = any(lo <= x <= hi for x in candidates for lo, hi in token.ranges)
        return hit != token.negated

    def _single_matches(self, token: _Token, c: str) -> bool:
        if self.path_mode and c in self._separators and token.type is not _TokenType.LITERAL:
            return False
        if token.type is _TokenType.ANY:
            return True
        if token.type is _TokenType.SET:
            return self._in_set(token, c)
        if self.path_mode and token.char in self._separators and c in self._separators:
            return True
        return self._char_equal(token.char, c)

    def match(self, text: str) -> bool:
        """Return True if the whole of ``text`` matches the pattern."""
        n = len(text)
        reach = [False] * (n + 1)
        reach[0] = True

        for token in self._tokens:
            nxt = [False] * (n + 1)
            if token.type is _TokenType.STAR:
                carry = False
                for j in range(n + 1):
                    if reach[j]:
                        carry = True
                    nxt[j] = carry
                    if carry and j < n and self.path_mode and text[j] in self._separators:
                        carry = False
            else:
                any_reached = False
                for j in range(n):
                    if reach[j] and self._single_matches(token, text[j]):
                        nxt[j + 1] = True
                        any_reached = True
                if not any_reached:
                    return False
            reach = nxt
        return reach[n]


def fnmatch(
    pattern: str,
    text: str,
    case_sensitive: Optional[bool] = None,
    path_mode: bool = False,
) -> bool:
    """One-shot convenience wrapper around GlobPattern."""
    return GlobPattern.compile(pattern, case_sensitive=case_sensitive, path_mode=path_mode).match(text)
