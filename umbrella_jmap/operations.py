"""Run one mail operation per input with per-input failure isolation."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel

from .errors import JmapError

logger = structlog.get_logger()

T = TypeVar("T")


class ItemResult(BaseModel):
    """Outcome for one input: a result, or the error that stopped it."""

    index: int
    result: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_record(self) -> Any:
        """The operation result, or ``{"error": message}`` for a failed input."""
        if self.error is not None:
            return {"error": self.error}
        return self.result


async def run_each(
    inputs: Sequence[T],
    operation: Callable[[T], Awaitable[Any]],
    *,
    continue_on_fail: bool = False,
) -> list[ItemResult]:
    """Apply *operation* to each input in order.

    With *continue_on_fail* a :class:`JmapError` is recorded for its input
    and the remaining inputs still run; otherwise it propagates.
    """
    results: list[ItemResult] = []
    for index, item in enumerate(inputs):
        try:
            value = await operation(item)
        except JmapError as exc:
            if not continue_on_fail:
                raise
            logger.warning("operation_item_failed", index=index, error=str(exc))
            results.append(ItemResult(index=index, error=str(exc)))
            continue
        results.append(ItemResult(index=index, result=value))
    return results
