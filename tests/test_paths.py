from __future__ import annotations

import os

import pytest

from fileserver.domain.paths import (
    BadCharactersError,
    PathError,
    TooManyDotsError,
    TooManySeparatorsError,
    clean,
)


@pytest.mark.parametrize(
    "segment",
    [
        "good",
        "fine.foo",
        "some-other-chars-œ-Ÿ-¥-ç",
        ".bashrc",
        "with space.txt",
        "UPPER_case-01",
    ],
)
def test_clean_accepts_safe_segments_unchanged(segment: str) -> None:
    assert clean(segment) == segment


@pytest.mark.parametrize(
    "segment, error",
    [
        ("bad.more.than.one.dot", TooManyDotsError),
        ("..", TooManyDotsError),
        ("...", TooManyDotsError),
        ("../etc/passwd", TooManyDotsError),
        ("a/b", TooManySeparatorsError),
        (f"bad{os.sep}morethanzeroslashes", TooManySeparatorsError),
        ("/etc/passwd", TooManySeparatorsError),
        ("", BadCharactersError),
        (".", BadCharactersError),
        ("nul\x00byte", BadCharactersError),
    ],
)
def test_clean_rejects_unsafe_segments(segment: str, error: type[PathError]) -> None:
    with pytest.raises(error):
        clean(segment)


def test_dotted_traversal_is_caught_after_normalization() -> None:
    # normpath collapses "a/../b.c" to "b.c"; the raw input never reaches disk.
    assert clean("a/../b.c") == "b.c"
    with pytest.raises(TooManyDotsError):
        clean(".../...//")


def test_errors_carry_counts_and_codes() -> None:
    with pytest.raises(TooManyDotsError) as dots:
        clean("a.b.c.d")
    assert dots.value.count == 3
    assert dots.value.code == "too_many_dots"

    with pytest.raises(TooManySeparatorsError) as seps:
        clean("x/y/z")
    assert seps.value.count == 2
    assert seps.value.code == "too_many_separators"


def test_path_errors_are_value_errors() -> None:
    with pytest.raises(ValueError):
        clean("a/b")


@pytest.mark.parametrize("segment", ["good", "fine.foo", "trailing/", "./lead", "some-other-chars-œ"])
def test_clean_is_idempotent(segment: str) -> None:
    once = clean(segment)
    assert clean(once) == once


@pytest.mark.parametrize("segment", ["report.pdf", "x", "œ.txt"])
def test_cleaned_segment_stays_inside_base(tmp_path, segment: str) -> None:
    base = os.path.realpath(tmp_path)
    joined = os.path.realpath(os.path.join(base, clean(segment)))
    assert os.path.dirname(joined) == base
