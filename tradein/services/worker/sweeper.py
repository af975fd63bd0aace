"""Periodic maintenance sweeps run beside the assessment worker."""

import asyncio

from tradein.common.config import settings
from tradein.common.logging import logger


class Sweeper:
    """Runs each named sweep every `interval_seconds`; one failing sweep never stops the others."""

    def __init__(self, sweeps: dict, interval_seconds: float | None = None) -> None:
        self.sweeps = sweeps
        self.interval_seconds = settings.sweep_interval_seconds if interval_seconds is None else interval_seconds

    def run_once(self) -> dict[str, int]:
        results = {}
        for name, sweep in self.sweeps.items():
            try:
                results[name] = sweep()
            except Exception as exc:
                logger.exception("sweep failed name=%s error=%s", name, exc)
                results[name] = -1
        return results

    async def run(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            results = self.run_once()
            changed = {name: count for name, count in results.items() if count}
            if changed:
                logger.info("sweep pass completed results=%s", changed)
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
