"""Bounded fan-out over a worker pool."""

from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, List, Tuple, TypeVar

from build_registry.constants import DEFAULT_LIMIT

T = TypeVar("T")
R = TypeVar("R")


def run_bounded(
    items: Iterable[T],
    fn: Callable[[T], R],
    limit: int = DEFAULT_LIMIT,
) -> List[Tuple[T, R]]:
    """
    Apply `fn` to every item with at most `limit` calls in flight.

    Results are returned in input order. The first exception raised by
    any call propagates once the in-flight calls have finished; calls not
    yet started are cancelled.
    """
    items = list(items)
    if not items:
        return []

    results = {}
    with ThreadPoolExecutor(max_workers=max(1, min(limit, len(items)))) as executor:
        futures = {executor.submit(fn, item): index for index, item in enumerate(items)}
        try:
            for future in as_completed(futures):
                results[futures[future]] = future.result()
        except BaseException:
            for future in futures:
                future.cancel()
            raise

    return [(items[index], results[index]) for index in range(len(items))]
