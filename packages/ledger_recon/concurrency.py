"""Bounded, order-preserving thread fan-out for independent oracle calls.

Used for per-page extraction of multi-page documents: each page is one
blocking oracle round-trip, so a small thread pool overlaps the network
latency. Results come back in input order regardless of completion order.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


def p_map(
    items: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    stop_on_error: bool = True,
) -> list[OutT]:
    """Apply ``mapper`` to every item with at most ``concurrency`` calls in flight.

    - Output order equals input order.
    - ``stop_on_error=True``: the first failure is re-raised and pending work
      that has not started is cancelled.
    - ``stop_on_error=False``: every item runs; failures are raised together as
      an ``ExceptionGroup`` once all calls have finished.
    """

    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    pending = iter(enumerate(items))
    results: dict[int, OutT] = {}
    failures: list[tuple[int, Exception]] = []
    in_flight: dict[Future[OutT], int] = {}
    total = 0

    with ThreadPoolExecutor(max_workers=concurrency) as pool:

        def fill() -> None:
            nonlocal total
            while len(in_flight) < concurrency:
                nxt = next(pending, None)
                if nxt is None:
                    return
                idx, item = nxt
                in_flight[pool.submit(mapper, item)] = idx
                total += 1

        fill()
        while in_flight:
            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = in_flight.pop(fut)
                exc = fut.exception()
                if exc is None:
                    results[idx] = fut.result()
                    continue
                if not isinstance(exc, Exception):
                    raise exc
                if stop_on_error:
                    for other in in_flight:
                        other.cancel()
                    raise exc
                failures.append((idx, exc))
            fill()

    if failures:
        failures.sort(key=lambda pair: pair[0])
        raise ExceptionGroup("p_map: one or more mapper calls failed", [e for _, e in failures])
    return [results[i] for i in range(total)]


__all__ = ["p_map"]
