"""Tests for the INI-like config and cache file reader."""

import logging

import pytest

from envseek.core.cfg_file import parse_lines, parse_value, read_cfg_file
from envseek.core.errors import ConfigMalformedError


def test_sections_keys_and_comments():
    lines = [
        "# top comment",
        "cache.enable = 0   ; keep it off",
        "",
        "[Python]",
        'ignore = "c:\\Program Files (x86)\\IronPython\\ipy.exe"',
        "[ Compiler ]",
        "ignore = avr-gcc",
    ]

    entries = list(parse_lines(lines))

    assert [(e.section, e.key, e.value) for e in entries] == [
        (None, "cache.enable", "0"),
        ("Python", "ignore", "c:\\Program Files (x86)\\IronPython\\ipy.exe"),
        ("Compiler", "ignore", "avr-gcc"),
    ]
    assert entries[1].line_number == 5


def test_hash_inside_a_word_is_not_a_comment():
    assert parse_value("a#b") == "a#b"
    assert parse_value("a #b") == "a"


def test_quoted_value_rules():
    assert parse_value('"c:\\x y\\z.exe"') == "c:\\x y\\z.exe"
    assert parse_value('"unterminated') is None
    assert parse_value('"a*b"') is None
    assert parse_value('"ok" ; trailing comment') == "ok"
    assert parse_value('"ok" junk') is None


def test_malformed_lines_are_skipped_with_a_warning(caplog):
    with caplog.at_level(logging.WARNING, logger="envseek"):
        entries = list(parse_lines(["this is not valid", "key = value"], source="x.cfg"))

    assert [e.key for e in entries] == ["key"]
    assert "x.cfg(1)" in caplog.text


def test_strict_mode_raises():
    with pytest.raises(ConfigMalformedError) as exc:
        list(parse_lines(["ok = 1", 'bad = "open'], source="x.cfg", strict=True))

    assert exc.value.line_number == 2


def test_verbatim_values_for_cache_files():
    entries = list(parse_lines(["[Test]", "key = a ; b # c"], inline_comments=False))

    assert entries[0].value == "a ; b # c"


def test_missing_file_is_empty(tmp_path):
    assert read_cfg_file(tmp_path / "nope.cfg") == []


def test_reads_a_file(tmp_path):
    path = tmp_path / "envseek.cfg"
    path.write_text("[Lua]\nignore = /opt/lua\n", encoding="utf-8")

    entries = read_cfg_file(path)

    assert len(entries) == 1
    assert entries[0].section == "Lua"
