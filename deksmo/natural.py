"""Natural ("human") ordering for file and folder names."""

from __future__ import annotations

import re
from typing import Callable, Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")

_DIGIT_RUN = re.compile(r"([0-9]+)")


def natural_key(s: str) -> Tuple:
    """
    Sort '1.jpg' < '2.jpg' < '10.jpg' (natural number order).

    Digit runs compare by value, everything else case-insensitively. Equal
    values are broken by digit-run length (longer first, so '01' < '1') and
    finally by the raw string, which keeps the order total.
    """
    parts = _DIGIT_RUN.split(s)
    # re.split with a capture group alternates text, digits, text, ... so the
    # same positions always hold the same type across keys.
    primary = [int(p) if i % 2 else p.casefold() for i, p in enumerate(parts)]
    zero_padding = tuple(-len(p) for p in parts[1::2])
    return (primary, zero_padding, s)


def natural_compare(a: str, b: str) -> int:
    """Three-way comparison: negative, zero or positive."""
    ka, kb = natural_key(a), natural_key(b)
    return (ka > kb) - (ka < kb)


def natural_sorted(items: Iterable[T], key: Optional[Callable[[T], str]] = None) -> List[T]:
    if key is None:
        return sorted(items, key=natural_key)  # type: ignore[arg-type]
    return sorted(items, key=lambda item: natural_key(key(item)))


__all__ = ["natural_compare", "natural_key", "natural_sorted"]
