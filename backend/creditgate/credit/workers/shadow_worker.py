"""Sweeps the denial schedule and executes denials that are due."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from creditgate.credit.domain.shadow import ShadowEnforcer

logger = logging.getLogger(__name__)


@dataclass
class ShadowEnforcementWorker:
    enforcer: ShadowEnforcer
    batch_size: int = 100

    async def run_once(self) -> int:
        try:
            return await self.enforcer.run_due(limit=self.batch_size)
        except Exception:  # noqa: BLE001 - the sweep retries on its next tick
            logger.exception("shadow_sweep_failed")
            return 0
