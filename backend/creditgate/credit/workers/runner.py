"""Utilities for wiring credit workers into an event loop."""

from __future__ import annotations

import asyncio
from typing import Iterable, Optional

from creditgate.credit.domain.container import get_shadow_enforcer
from creditgate.credit.workers.shadow_worker import ShadowEnforcementWorker


async def _run_forever(worker, delay: float) -> None:
    while True:
        await worker.run_once()
        await asyncio.sleep(delay)


def spawn_workers(
    *,
    sweep_interval: float = 5.0,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Iterable[asyncio.Task]:
    """Create asyncio tasks for the credit background workers."""

    event_loop = loop or asyncio.get_running_loop()
    shadow = ShadowEnforcementWorker(enforcer=get_shadow_enforcer())
    return [event_loop.create_task(_run_forever(shadow, sweep_interval), name="credit-shadow-enforcement")]
