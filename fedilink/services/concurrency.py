from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextvars import copy_context
from typing import TypeVar

LOGGER = logging.getLogger("fedilink.concurrency")

K = TypeVar("K", bound=Hashable)
R = TypeVar("R")


def run_keyed_tasks(
    keys: Sequence[K],
    task: Callable[[K], R],
    *,
    max_workers: int,
    timeout_seconds: float | None = None,
    thread_name_prefix: str = "fedilink",
) -> dict[K, R]:
    """
    Run ``task(key)`` for every key on a bounded worker pool.

    Only tasks that finished within ``timeout_seconds`` and did not raise are
    returned. Unfinished tasks are abandoned, not awaited: the call returns as
    soon as the deadline passes. Keys must be unique.
    """
    if not keys:
        return {}

    executor = ThreadPoolExecutor(
        max_workers=max(1, min(max_workers, len(keys))),
        thread_name_prefix=thread_name_prefix,
    )
    try:
        future_to_key: dict[Future[R], K] = {
            executor.submit(copy_context().run, task, key): key for key in keys
        }
        done, not_done = wait(future_to_key, timeout=timeout_seconds)
        for future in not_done:
            future.cancel()
            LOGGER.warning(
                "task abandoned after timeout key=%s timeout_seconds=%s",
                future_to_key[future],
                timeout_seconds,
            )

        results: dict[K, R] = {}
        for future, key in future_to_key.items():
            if future not in done:
                continue
            try:
                results[key] = future.result()
            except Exception:
                LOGGER.exception("task failed key=%s", key)
        return results
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
