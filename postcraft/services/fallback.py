"""Ordered fallback executor: try each strategy in turn, stop at the first success."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Callable, Optional, Sequence, TypeVar

import structlog

log = structlog.get_logger()

T = TypeVar("T")


class StrategiesExhausted(Exception):
    """Every strategy failed; ``errors`` holds one "<name>: <reason>" per attempt."""

    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors) or "no strategies to run")
        self.errors = errors


def _call_with_timeout(fn: Callable[[], T], timeout: Optional[float]) -> T:
    if timeout is None:
        return fn()
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="strategy")
    future = pool.submit(fn)
    try:
        return future.result(timeout=timeout)
    finally:
        # A timed-out call keeps its worker thread; nobody waits for it.
        pool.shutdown(wait=False, cancel_futures=True)


def run_in_order(
    strategies: Sequence[tuple[str, Callable[[], T]]],
    timeout: Optional[float] = None,
    accept: Optional[Callable[[T], bool]] = None,
) -> tuple[str, T]:
    """Run ``(name, call)`` pairs in order with a per-call timeout.

    Returns ``(name, result)`` of the first call that neither raises, times out
    nor is refused by ``accept``; later strategies are never started. Raises
    :class:`StrategiesExhausted` with every collected error otherwise.
    """
    errors: list[str] = []
    for name, call in strategies:
        try:
            result = _call_with_timeout(call, timeout)
        except FuturesTimeout:
            reason = f"timed out after {timeout:g}s"
        except Exception as exc:
            reason = str(exc) or exc.__class__.__name__
        else:
            if accept is None or accept(result):
                log.info("strategy_succeeded", strategy=name, attempt=len(errors) + 1)
                return name, result
            reason = "empty result"

        errors.append(f"{name}: {reason}")
        log.warning("strategy_failed", strategy=name, error=reason[:300])

    raise StrategiesExhausted(errors)
