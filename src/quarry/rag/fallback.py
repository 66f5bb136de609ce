"""Ordered-fallback combinator.

Each strategy is a named zero-argument callable tried in order; the first one
that returns wins. Only the listed exception types move on to the next
strategy; anything else propagates immediately.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TypeVar

from loguru import logger

T = TypeVar("T")


def first_success(
    strategies: Sequence[tuple[str, Callable[[], T]]],
    recover: tuple[type[Exception], ...] = (Exception,),
) -> tuple[str, T]:
    """Run *strategies* in order and return ``(name, result)`` of the first success.

    Raises:
        ValueError: If *strategies* is empty.
        Exception: The last strategy's error when every strategy fails; the
            earlier errors are logged.
    """
    if not strategies:
        raise ValueError("first_success() needs at least one strategy")

    errors: list[Exception] = []
    for name, strategy in strategies:
        try:
            result = strategy()
        except recover as exc:
            logger.warning(f"Strategy '{name}' failed: {exc}")
            errors.append(exc)
            continue
        return name, result

    raise errors[-1]
