from __future__ import annotations

import os
import re

__all__ = [
    "SEPARATORS",
    "PathError",
    "TooManyDotsError",
    "TooManySeparatorsError",
    "BadCharactersError",
    "clean",
]

SEPARATORS: tuple[str, ...] = tuple(s for s in (os.sep, os.altsep) if s)

# Allow-list: one or more characters that are neither a separator nor NUL.
_ALLOWED_RE = re.compile(r"[^%s\x00]+" % re.escape("".join(SEPARATORS)))


# ------------------------
# Errors
# ------------------------
class PathError(ValueError):
    """Base class for rejected path segments.

    `code` is a stable machine code the HTTP layer can hand back to clients.
    """

    code: str = "invalid_path"


class TooManyDotsError(PathError):
    code = "too_many_dots"

    def __init__(self, count: int) -> None:
        super().__init__(f"too many dots ({count})")
        self.count = count


class TooManySeparatorsError(PathError):
    code = "too_many_separators"

    def __init__(self, count: int) -> None:
        super().__init__(f"too many file separators ({count})")
        self.count = count


class BadCharactersError(PathError):
    code = "bad_characters"

    def __init__(self) -> None:
        super().__init__("prohibited characters found")


# ------------------------
# Public API
# ------------------------

def clean(segment: str) -> str:
    """Validate a single client-supplied path component.

    Returns the lexically normalized segment, which is safe to join onto a
    trusted base directory: it names exactly one entry inside that directory.

    Every check below rejects on its own. Normalization alone is not trusted:
    stripping "../" from ".../...//" still leaves "../".

    Raises:
        TooManyDotsError: more than one "." (blocks ".." and "a.b.c" tricks).
        TooManySeparatorsError: any directory separator remains.
        BadCharactersError: not a run of allowed characters, or names the
            base directory itself. "." is refused here even though it has a
            single dot and no separator: joined onto the base it would name
            the base directory, not an entry in it.
    """
    if not isinstance(segment, str):
        raise BadCharactersError()

    normalized = os.path.normpath(segment)

    dots = normalized.count(".")
    if dots > 1:
        raise TooManyDotsError(dots)

    separators = sum(normalized.count(sep) for sep in SEPARATORS)
    if separators > 0:
        raise TooManySeparatorsError(separators)

    # normpath("") == "."; a bare dot would resolve to the base directory.
    if normalized == "." or not _ALLOWED_RE.fullmatch(normalized):
        raise BadCharactersError()

    return normalized
