"""
Property-based tests for glob matching and search-spec splitting.

Over an alphabet without escapes the matcher agrees with fnmatchcase.
"""

import fnmatch

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from envseek.core.glob_matcher import GlobPattern
from envseek.services.search_types import fix_filespec

pattern_token_strategy = st.sampled_from(["a", "b", ".", "*", "?", "[ab]", "[!a]", "[a-c]"])
pattern_strategy = st.lists(pattern_token_strategy, min_size=1, max_size=8).map("".join)
text_strategy = st.text(alphabet="abc.", max_size=10)

NAME_CHARS = "abcdefghijklmnopqrstuvwxyz0123456789_-"


@given(pattern=pattern_strategy, text=text_strategy)
@settings(max_examples=300, suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_agrees_with_fnmatchcase(pattern, text):
    compiled = GlobPattern.compile(pattern, case_sensitive=True)

    assert compiled.match(text) == fnmatch.fnmatchcase(text, pattern)


@given(pattern=pattern_strategy, text=text_strategy)
@settings(max_examples=100, suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_case_insensitive_match_ignores_case(pattern, text):
    compiled = GlobPattern.compile(pattern, case_sensitive=False)

    assert compiled.match(text) == compiled.match(text.upper())


@given(
    subdir=st.text(alphabet=NAME_CHARS + "/", max_size=12).filter(lambda s: not s.endswith("/")),
    stem=st.text(alphabet=NAME_CHARS, min_size=1, max_size=10),
    ext=st.sampled_from(["", ".h", ".py", "*", "$"]),
)
@settings(max_examples=200, suppress_health_check=[HealthCheck.function_scoped_fixture])
def test_fix_filespec_splits_and_completes(subdir, stem, ext):
    spec = f"{subdir}/{stem}{ext}" if subdir else f"{stem}{ext}"

    got_subdir, file_spec = fix_filespec(spec)

    assert got_subdir == subdir
    assert "/" not in file_spec
    if ext:
        assert file_spec == stem + ext
    else:
        assert file_spec == stem + ".*"
