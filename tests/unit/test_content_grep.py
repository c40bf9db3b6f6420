"""Tests for grep-mode content matching."""

import pytest

from envseek.core.content_grep import ContentGrep, ContentGrepError, GrepMode


def test_substring_is_case_insensitive_by_default(tmp_path):
    path = tmp_path / "a.h"
    path.write_text("#pragma once\nint Foo(void);\nint foo2(void);\n", encoding="utf-8")

    hit = ContentGrep("foo").search_file(str(path))

    assert hit is not None
    assert hit.line_number == 2
    assert hit.line == "int Foo(void);"
    assert hit.matched == "Foo"
    assert hit.total_hits == 2


def test_case_sensitive_substring():
    assert ContentGrep("foo", case_sensitive=True).search_text("FOO\n") is None


def test_regex_mode():
    hit = ContentGrep(r"int\s+\w+\(", mode=GrepMode.REGEX).search_text("x\nint main(void)\n")

    assert hit is not None
    assert hit.matched == "int main("


def test_hits_stop_counting_at_max_matches():
    hit = ContentGrep("x", max_matches=3).search_text("x\n" * 10)

    assert hit is not None
    assert hit.total_hits == 3


def test_binary_and_missing_files_never_match(tmp_path):
    binary = tmp_path / "lib.so"
    binary.write_bytes(b"\x7fELF\x00\x00needle")

    grep = ContentGrep("needle")

    assert grep.search_file(str(binary)) is None
    assert grep.search_file(str(tmp_path / "nope")) is None


def test_invalid_queries():
    with pytest.raises(ContentGrepError):
        ContentGrep("")
    with pytest.raises(ContentGrepError):
        ContentGrep("(", mode=GrepMode.REGEX)


def test_substring_mode_escapes_regex_characters():
    assert ContentGrep("a.b").search_text("axb\n") is None
    assert ContentGrep("a.b").search_text("a.b\n") is not None
