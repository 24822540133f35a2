"""Queensland lot/plan identifier normalisation.

Turns free-form user text into the canonical ``LOT/PLAN`` key the
backend resolves, for example:

- ``"3/RP67254"``     ->  ``"3/RP67254"``
- ``"3 rp67254"``     ->  ``"3/RP67254"``
- ``"L2 RP53435"``    ->  ``"2/RP53435"``
- ``"2/SP 12345"``    ->  ``"2/SP12345"``
- ``"10ABCDE1"``      ->  ``"10A/BCDE1"``  (lot with a one-letter suffix)

Input that cannot be decomposed is returned as a single literal token so
the caller can still attempt resolution with it.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

# Plan label: 1-4 letter prefix (RP, SP, CP, BUP, ...) + 1-7 digit number.
_PLAN_RE = re.compile(r"[A-Z]{1,4}\d{1,7}")
_LEADING_DIGITS_RE = re.compile(r"\d+")
_WHITESPACE_RE = re.compile(r"\s+")

LOT_PREFIX = "L"


def normalize_lotplan(text: str) -> list[str]:
    """Normalise *text* into zero or one canonical lot/plan keys.

    Args:
        text: Raw user input.

    Returns:
        ``[]`` for blank input, otherwise a single-element list holding
        either a ``LOT/PLAN`` key or the undecomposable normalised token.
    """
    s = _WHITESPACE_RE.sub("", (text or "").upper())
    if not s:
        return []

    if s.startswith(LOT_PREFIX):
        s = s[len(LOT_PREFIX) :]

    if "/" in s:
        lot, plan = s.split("/", 1)
        return [f"{lot}/{plan}"]

    digits = _LEADING_DIGITS_RE.match(s)
    if digits is None:
        return [s]

    lot = digits.group(0)
    rest = s[len(lot) :]
    if _PLAN_RE.fullmatch(rest):
        return [f"{lot}/{rest}"]

    # Lot numbers may carry a one-character suffix (e.g. "10A").
    if rest:
        plan = rest[1:]
        if _PLAN_RE.fullmatch(plan):
            return [f"{lot}{rest[0]}/{plan}"]

    return [s]


def normalize_many(texts: Iterable[str]) -> list[str]:
    """Normalise several inputs, concatenating keys without duplicates."""
    keys: list[str] = []
    for text in texts:
        for key in normalize_lotplan(text):
            if key not in keys:
                keys.append(key)
    return keys


def split_batch_input(text: str) -> list[str]:
    """Split comma, semicolon, or newline separated input into entries."""
    return [part for part in re.split(r"[,;\n]+", text or "") if part.strip()]
