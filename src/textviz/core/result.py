"""Lightweight, typed Result container for explicit success/failure returns.

The tolerant parsing helpers (JSON span extraction, final instruction parse)
report "could not parse" as an ordinary value rather than an exception,
because a malformed model response is an expected outcome there:

>>> from textviz.core.result import ok, err, Result
>>> def parse_int(x: str) -> Result[int, str]:
...     return ok(int(x)) if x.isdigit() else err("not a digit")
>>> parse_int("42").unwrap()
42
>>> parse_int("x").ok_or_none() is None
True
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar, cast

T = TypeVar("T")
E = TypeVar("E")


class Result(Generic[T, E]):
    """Sum type representing either success (`Ok[T]`) or failure (`Err[E]`)."""

    def is_err(self) -> bool:
        """Return ``True`` if this is an :class:`Err` value."""
        return isinstance(self, Err)

    def unwrap(self, default: T | None = None) -> T:
        """Return the inner value if ``Ok``, else ``default`` or raise ``RuntimeError``."""
        if isinstance(self, Ok):
            return cast(Ok[T, E], self).value
        if default is not None:
            return default
        raise RuntimeError(f"Attempted to unwrap Err: {self!r}")

    def unwrap_err(self) -> E:
        """Return the error value if ``Err``, else raise."""
        if isinstance(self, Err):
            return cast(Err[T, E], self).error
        raise RuntimeError(f"Attempted to unwrap_err on Ok: {self!r}")

    def ok_or_none(self) -> T | None:
        """Return the success value, or ``None`` for ``Err``."""
        if isinstance(self, Ok):
            return cast(Ok[T, E], self).value
        return None

    def __repr__(self) -> str:  # pragma: no cover - trivial representation
        if isinstance(self, Ok):
            return f"Ok({cast(Ok[T, E], self).value!r})"
        if isinstance(self, Err):
            return f"Err({cast(Err[T, E], self).error!r})"
        return "Result(?)"


@dataclass(frozen=True)
class Ok(Result[T, E]):
    """Successful result wrapping a value of type ``T``."""

    value: T


@dataclass(frozen=True)
class Err(Result[T, E]):
    """Failed result wrapping an error payload of type ``E``."""

    error: E


def ok(value: T) -> Result[T, E]:
    """Construct :class:`Ok` with better type inference at call sites."""
    return Ok(value)


def err(error: E) -> Result[T, E]:
    """Construct :class:`Err` with better type inference at call sites."""
    return Err(error)


__all__ = ["Result", "Ok", "Err", "ok", "err"]
