"""Scheduled jobs for the relay.

Sweep Strategy:
- Run on a fixed interval (hourly by default) as a background asyncio task
- Each pass runs in a worker thread so request handling keeps going
- The store holds one vault lock at a time, so a pass never stalls
  requests for longer than one vault's backlog takes to filter
- Shutdown stops scheduling further passes; an in-flight pass finishes
"""

from __future__ import annotations

import asyncio
import logging

from .store import SweepResult, VaultStore

logger = logging.getLogger(__name__)

# Global flag to signal shutdown to the sweep loop
_shutdown_event: asyncio.Event | None = None

# Result of the most recent pass, exposed by /admin/stats
last_sweep: SweepResult | None = None


def run_sweep(store: VaultStore) -> SweepResult:
    """Run a single sweep pass synchronously.

    Returns:
        Counters for the pass
    """
    global last_sweep
    result = store.sweep()
    last_sweep = result
    if result.messages_removed or result.vaults_removed:
        logger.info(
            f"Sweep removed {result.messages_removed} message(s) and "
            f"{result.vaults_removed} vault(s) across {result.vaults_scanned} scanned"
        )
    else:
        logger.debug(f"Sweep scanned {result.vaults_scanned} vault(s), nothing to remove")
    return result


def schedule_sweep(store: VaultStore, interval_seconds: float) -> asyncio.Task | None:
    """Schedule the periodic sweep as a background task.

    This should be called during application startup. The first pass runs
    one interval after startup.
    """
    global _shutdown_event

    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No event loop available for the sweep job")
        return None

    _shutdown_event = asyncio.Event()
    shutdown_event = _shutdown_event

    async def _sweep_loop():
        logger.info(f"Sweep scheduled every {interval_seconds}s")
        while not shutdown_event.is_set():
            try:
                # Wait for the interval or shutdown signal
                await asyncio.wait_for(shutdown_event.wait(), timeout=interval_seconds)
                # If we get here, shutdown was signaled
                break
            except asyncio.TimeoutError:
                pass

            try:
                await asyncio.to_thread(run_sweep, store)
            except Exception as e:
                logger.error(f"Sweep failed: {e}")
                # Keep the loop alive for the next pass

    return loop.create_task(_sweep_loop())


def stop_sweep() -> None:
    """Signal the sweep loop to stop.

    Should be called during application shutdown.
    """
    global _shutdown_event
    if _shutdown_event is not None:
        _shutdown_event.set()
        _shutdown_event = None
