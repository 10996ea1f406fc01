from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from ..logger import logger

T = TypeVar("T")


@dataclass(frozen=True)
class DispatchOutcome(Generic[T]):
    item: T
    ok: bool
    result: Any = None
    error: Optional[BaseException] = None


async def run_bounded(
    items: Sequence[T],
    cap: int,
    worker: Callable[[T], Awaitable[Any]],
) -> List[DispatchOutcome[T]]:
    """
    Run `worker` over every item with at most `cap` calls in flight.

    A failing item is recorded in its outcome and never cancels the others.
    Outcomes come back in input order.
    """
    if cap < 1:
        raise ValueError("cap must be at least 1")
    semaphore = asyncio.Semaphore(cap)

    async def _run(item: T) -> DispatchOutcome[T]:
        async with semaphore:
            try:
                result = await worker(item)
            except Exception as exc:
                logger.warning(f"Dispatched item failed: {exc}", extra={"error": str(exc)})
                return DispatchOutcome(item=item, ok=False, error=exc)
            return DispatchOutcome(item=item, ok=True, result=result)

    return list(await asyncio.gather(*(_run(item) for item in items)))


def batch_succeeded(outcomes: Sequence[DispatchOutcome]) -> bool:
    """Partial success counts as success; an empty batch trivially succeeds."""
    if not outcomes:
        return True
    return any(o.ok for o in outcomes)
