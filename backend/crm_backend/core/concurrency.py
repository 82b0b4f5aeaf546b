"""Concurrency helpers for controlling background thread usage."""

from __future__ import annotations

from typing import Any, Callable

import anyio

from crm_backend.core.config import settings

_outbound_sem = anyio.Semaphore(settings.AI_MAX_CONCURRENCY)


async def run_in_thread_limited(func: Callable[..., Any], *args: Any, **kwargs: Any):
    """Run a blocking outbound HTTP call in a worker thread with bounded concurrency."""

    async with _outbound_sem:
        return await anyio.to_thread.run_sync(lambda: func(*args, **kwargs))
