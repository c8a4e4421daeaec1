"""Bounded-concurrency ordered map over a ``ThreadPoolExecutor``.

``p_map(items, mapper, concurrency=n)`` keeps at most ``n`` mapper calls in
flight, returns results in input order, and optionally reports each
completion through ``on_result(index, value)`` from the calling thread (so
callers can publish progress without their own locking).

Errors: with ``stop_on_error=True`` (default) the first mapper error cancels
work that has not started and propagates; otherwise every item runs and the
failures are raised together as an ``ExceptionGroup``.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
    on_result: Callable[[int, OutT], None] | None = None,
    stop_on_error: bool = True,
    thread_name_prefix: str = "p_map",
) -> list[OutT]:
    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    it = enumerate(iterable)
    results: dict[int, OutT] = {}
    errors: list[Exception] = []
    future_to_idx: dict[Future[OutT], int] = {}
    submitted = 0

    def _submit(pool: ThreadPoolExecutor) -> Future[OutT] | None:
        nonlocal submitted
        try:
            idx, item = next(it)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        future_to_idx[fut] = idx
        submitted += 1
        return fut

    with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix=thread_name_prefix) as pool:
        active: set[Future[OutT]] = set()
        for _ in range(concurrency):
            fut = _submit(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            done, active = wait(active, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = future_to_idx.pop(fut)
                try:
                    value = fut.result()
                except Exception as e:  # noqa: BLE001
                    if stop_on_error:
                        pool.shutdown(wait=False, cancel_futures=True)
                        raise
                    errors.append(e)
                    continue
                results[idx] = value
                if on_result is not None:
                    on_result(idx, value)

            # One new submission per completion keeps the window full.
            for _ in range(len(done)):
                fut = _submit(pool)
                if fut is None:
                    break
                active.add(fut)

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)
    return [results[i] for i in range(submitted)]


__all__ = ["p_map"]
