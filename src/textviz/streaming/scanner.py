"""
Incremental scanner for the first JSON object in a growing text buffer.

Model output arrives a few characters at a time and may be wrapped in code
fences or commentary. Rather than re-running a regex over the whole buffer on
every chunk, :class:`JsonObjectScanner` walks each character exactly once and
keeps just enough state (string/escape flags, nesting depth, position inside
the top-level object) to report two things as early as possible:

- **members**: every top-level ``key → raw value text`` pair, recorded the
  moment the value's closing delimiter arrives, while the outer object may
  still be incomplete;
- **completion**: the span of the outer object once its closing brace arrives.

The scanner only delimits; it never decides validity. Callers parse the raw
slices with :func:`json.loads`. When a completed span turns out not to be JSON
(e.g. a brace inside leading commentary), :meth:`JsonObjectScanner.skip_object`
resumes the search after its closing brace, so the nested values of a
malformed document are never mistaken for the document itself.
"""

from __future__ import annotations

import json
import re
from collections.abc import Iterator
from enum import Enum, auto
from typing import Any

from textviz.core.result import Result, err, ok


class _Expect(Enum):
    """Where the scanner is inside the top-level object."""

    KEY = auto()
    COLON = auto()
    VALUE = auto()
    IN_VALUE = auto()
    AFTER_VALUE = auto()


class JsonObjectScanner:
    """Delimit the first top-level JSON object in an append-only buffer.

    Usage
    -----
    >>> scanner = JsonObjectScanner()
    >>> scanner.feed('noise {"a": [1, 2], "b"')
    ['a']
    >>> scanner.members["a"]
    '[1, 2]'
    >>> scanner.feed(': true}')
    ['b']
    >>> scanner.complete
    True
    """

    def __init__(self) -> None:
        self._text = ""
        self.reset_state(0)

    def reset_state(self, search_from: int) -> None:
        """Forget the current object and search for a ``{`` from ``search_from``."""
        self._pos = search_from
        self._start: int | None = None
        self._end: int | None = None
        self._depth = 0
        self._in_string = False
        self._escape = False
        self._expect = _Expect.KEY
        self._key_start = 0
        self._key: str | None = None
        self._value_start = 0
        self.members: dict[str, str] = {}

    # ------------------------------------------------------------------ #
    # Introspection
    # ------------------------------------------------------------------ #
    @property
    def text(self) -> str:
        return self._text

    @property
    def complete(self) -> bool:
        return self._end is not None

    @property
    def start(self) -> int | None:
        return self._start

    def object_text(self) -> str | None:
        """Return the completed object's text, or ``None`` while incomplete."""
        if self._start is None or self._end is None:
            return None
        return self._text[self._start : self._end]

    # ------------------------------------------------------------------ #
    # Scanning
    # ------------------------------------------------------------------ #
    def feed(self, chunk: str) -> list[str]:
        """Append ``chunk`` and scan it.

        Returns the keys of the top-level members completed by this chunk, in
        order (a repeated key appears again if its value completes again).
        """
        if chunk:
            self._text += chunk
        return self._scan()

    def skip_object(self) -> list[str]:
        """Drop the completed object and rescan after its closing brace."""
        if self._end is None:
            raise RuntimeError("no completed object to skip")
        self.reset_state(self._end)
        return self._scan()

    def _complete_member(self, end: int) -> str | None:
        key = self._key
        self._key = None
        if key is None:
            return None
        self.members[key] = self._text[self._value_start : end].strip()
        return key

    def _scan(self) -> list[str]:
        completed: list[str] = []
        text = self._text
        i = self._pos
        n = len(text)

        while i < n and self._end is None:
            ch = text[i]

            if self._start is None:
                if ch == "{":
                    self._start = i
                    self._depth = 1
                    self._expect = _Expect.KEY
                i += 1
                continue

            if self._in_string:
                if self._escape:
                    self._escape = False
                elif ch == "\\":
                    self._escape = True
                elif ch == '"':
                    self._in_string = False
                    if self._depth == 1:
                        if self._expect is _Expect.KEY:
                            self._key = _decode_key(text[self._key_start : i + 1])
                            self._expect = _Expect.COLON
                        elif self._expect is _Expect.IN_VALUE:
                            key = self._complete_member(i + 1)
                            if key is not None:
                                completed.append(key)
                            self._expect = _Expect.AFTER_VALUE
                i += 1
                continue

            if ch == '"':
                self._in_string = True
                if self._depth == 1:
                    if self._expect is _Expect.KEY:
                        self._key_start = i
                    elif self._expect is _Expect.VALUE:
                        self._value_start = i
                        self._expect = _Expect.IN_VALUE
            elif ch in "{[":
                if self._depth == 1 and self._expect is _Expect.VALUE:
                    self._value_start = i
                    self._expect = _Expect.IN_VALUE
                self._depth += 1
            elif ch in "}]":
                self._depth -= 1
                if self._depth == 1 and self._expect is _Expect.IN_VALUE:
                    key = self._complete_member(i + 1)
                    if key is not None:
                        completed.append(key)
                    self._expect = _Expect.AFTER_VALUE
                elif self._depth == 0:
                    if self._expect is _Expect.IN_VALUE:
                        # Scalar value closed by the outer brace.
                        key = self._complete_member(i)
                        if key is not None:
                            completed.append(key)
                    self._end = i + 1
            elif self._depth == 1:
                if ch == ":" and self._expect is _Expect.COLON:
                    self._expect = _Expect.VALUE
                elif ch == ",":
                    if self._expect is _Expect.IN_VALUE:
                        key = self._complete_member(i)
                        if key is not None:
                            completed.append(key)
                    self._expect = _Expect.KEY
                elif not ch.isspace() and self._expect is _Expect.VALUE:
                    # Start of a scalar: number, true, false or null.
                    self._value_start = i
                    self._expect = _Expect.IN_VALUE
            i += 1

        self._pos = i
        return completed


def _decode_key(raw: str) -> str:
    try:
        key = json.loads(raw)
    except json.JSONDecodeError:
        return raw.strip('"')
    return key if isinstance(key, str) else str(key)


# Greedy first-brace-to-last-brace span.
_OBJECT_SPAN = re.compile(r"\{[\s\S]*\}")


def _candidate_spans(text: str) -> Iterator[str]:
    yield text.strip()

    scanner = JsonObjectScanner()
    scanner.feed(text)
    while scanner.complete:
        span = scanner.object_text()
        if span is not None:
            yield span
        scanner.skip_object()

    match = _OBJECT_SPAN.search(text)
    if match:
        yield match.group(0)


def extract_json_object(text: str) -> Result[dict[str, Any], str]:
    """Best-effort extraction of one JSON object from free-form model output.

    Tries, in order: the whole text, each balanced object found by
    :class:`JsonObjectScanner` (rescanning after spans that are not JSON) and
    the greedy ``{ ... }`` span. Neither a truncated nor a malformed document
    ever yields one of its nested objects. Returns ``Err`` with a short reason when nothing parses
    to an object.
    """
    if "{" not in text:
        return err("no JSON object found")

    for candidate in _candidate_spans(text):
        if not candidate:
            continue
        try:
            value = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(value, dict):
            return ok(value)

    return err("JSON object is incomplete or malformed")


__all__ = ["JsonObjectScanner", "extract_json_object"]
