"""Shell-style pattern matching with BSD fnmatch semantics, plus comma-separated glob filters."""

from __future__ import annotations

import enum

_EOS = ""
# Each comma-separated glob part is truncated to this many characters.
_GLOB_PART_MAX = 127


class FnmFlag(enum.IntFlag):
    """Flags modifying how :func:`fnmatch` compares a pattern with a name."""

    NONE = 0
    NOESCAPE = 0x01
    PATHNAME = 0x02
    PERIOD = 0x04
    LEADING_DIR = 0x08
    CASEFOLD = 0x10


def _at(text: str, index: int) -> str:
    return text[index] if index < len(text) else _EOS


def _lower(char: str) -> str:
    return char.lower() if char.isascii() else char


def _hidden(string: str, si: int, start: int, flags: FnmFlag) -> bool:
    """True when the character at ``si`` is a leading period that must match explicitly."""
    return (
        _at(string, si) == "."
        and bool(flags & FnmFlag.PERIOD)
        and (si == start or (bool(flags & FnmFlag.PATHNAME) and string[si - 1] == "/"))
    )


def _rangematch(pattern: str, pi: int, test: str, flags: FnmFlag) -> tuple[bool | None, int]:
    """Match ``test`` against the bracket expression starting at ``pi``.

    Returns ``(True, next_index)`` on a match, ``(False, pi)`` when there is no
    match, and ``(None, pi)`` when the bracket expression is malformed.
    """
    negate = _at(pattern, pi) in ("!", "^") and pi < len(pattern)
    if negate:
        pi += 1
    casefold = bool(flags & FnmFlag.CASEFOLD)
    escape = not flags & FnmFlag.NOESCAPE
    if casefold:
        test = _lower(test)

    ok = False
    c = _at(pattern, pi)
    pi += 1
    while True:
        if c == "\\" and escape:
            c = _at(pattern, pi)
            pi += 1
        if c == _EOS:
            return None, pi
        if c == "/" and flags & FnmFlag.PATHNAME:
            return False, pi
        if casefold:
            c = _lower(c)

        c2 = _at(pattern, pi + 1)
        if _at(pattern, pi) == "-" and c2 != _EOS and c2 != "]":
            pi += 2
            if c2 == "\\" and escape:
                c2 = _at(pattern, pi)
                pi += 1
            if c2 == _EOS:
                return None, pi
            if casefold:
                c2 = _lower(c2)
            if c <= test <= c2:
                ok = True
        elif c == test:
            ok = True

        c = _at(pattern, pi)
        pi += 1
        if c == "]":
            break

    return ok != negate, pi


def _match(pattern: str, pi: int, string: str, si: int, flags: FnmFlag) -> bool:
    start = si
    while True:
        c = _at(pattern, pi)
        pi += 1

        if c == _EOS:
            if flags & FnmFlag.LEADING_DIR and _at(string, si) == "/":
                return True
            return si >= len(string)

        if c == "?":
            ch = _at(string, si)
            if ch == _EOS:
                return False
            if ch == "/" and flags & FnmFlag.PATHNAME:
                return False
            if _hidden(string, si, start, flags):
                return False
            si += 1
            continue

        if c == "*":
            while _at(pattern, pi) == "*":
                pi += 1
            c = _at(pattern, pi)
            if _hidden(string, si, start, flags):
                return False
            if c == _EOS:
                if flags & FnmFlag.PATHNAME:
                    return bool(flags & FnmFlag.LEADING_DIR) or "/" not in string[si:]
                return True
            if c == "/" and flags & FnmFlag.PATHNAME:
                si = string.find("/", si)
                if si < 0:
                    return False
                continue
            sub_flags = flags & ~FnmFlag.PERIOD
            while si < len(string):
                test = string[si]
                if _match(pattern, pi, string, si, sub_flags):
                    return True
                if test == "/" and flags & FnmFlag.PATHNAME:
                    break
                si += 1
            return False

        if c == "[":
            ch = _at(string, si)
            if ch == _EOS:
                return False
            if ch == "/" and flags & FnmFlag.PATHNAME:
                return False
            if _hidden(string, si, start, flags):
                return False
            result, next_pi = _rangematch(pattern, pi, ch, flags)
            if result is False:
                return False
            if result is True:
                pi = next_pi
                si += 1
                continue
            # Malformed bracket: treat '[' as an ordinary character.
        elif c == "\\" and not flags & FnmFlag.NOESCAPE:
            escaped = _at(pattern, pi)
            if escaped != _EOS:
                c = escaped
                pi += 1

        ch = _at(string, si)
        if ch == _EOS:
            return False
        if c == ch or (flags & FnmFlag.CASEFOLD and _lower(c) == _lower(ch)):
            si += 1
            continue
        return False


def fnmatch(pattern: str, string: str, flags: FnmFlag | int = FnmFlag.NONE) -> bool:
    """Return True if ``string`` matches the shell pattern ``pattern``."""
    return _match(pattern, 0, string, 0, FnmFlag(flags))


def filter_glob(name: str, globs: str) -> bool:
    """Return True if ``name`` matches any of the comma-separated globs, ignoring case."""
    if globs.startswith(","):
        globs = globs[1:]
    return any(
        fnmatch(part[:_GLOB_PART_MAX], name, FnmFlag.CASEFOLD) for part in globs.split(",")
    )