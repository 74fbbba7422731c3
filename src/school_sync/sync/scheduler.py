"""Periodic reconciliation and connectivity handling.

``SyncScheduler`` is the composing-layer half of the engine: it receives
connectivity transitions, forwards them to ``SyncEngine``, and owns the
cancellable task that calls ``reconcile_now()`` at a fixed interval
while online.  Overlapping ticks are harmless because the engine skips a
run while another one holds its lock.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable

from ..core.async_utils import cancel_task
from .engine import SyncEngine
from .models import SyncReport

logger = logging.getLogger(__name__)

ConnectivityCheck = Callable[[], "bool | Awaitable[bool]"]


class SyncScheduler:
    """Drive ``SyncEngine`` from connectivity changes and a timer.

    Args:
        engine: The engine to reconcile.
        check_online: Point-in-time connectivity check, sync or async.
            Defaults to the engine's current flag.
        interval: Seconds between periodic reconciliations.
        on_report: Called with every non-skipped report.
    """

    def __init__(
        self,
        engine: SyncEngine,
        check_online: ConnectivityCheck | None = None,
        interval: float = 30.0,
        on_report: Callable[[SyncReport], None] | None = None,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.engine = engine
        self.interval = interval
        self._check_online = check_online or (lambda: engine.online)
        self._on_report = on_report
        self._ticker: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        """True while the periodic task is alive."""
        return self._ticker is not None and not self._ticker.done()

    async def start(self) -> SyncReport | None:
        """Bootstrap: check connectivity once and, if online, reconcile
        and start the periodic task.

        Returns the bootstrap report, or ``None`` when offline.
        """
        online = await self._probe()
        # An offline -> online transition already reconciles.
        report = await self.engine.on_connectivity_changed(online)
        if not online:
            logger.info("Starting offline; cached data only")
            return None
        if report is None:
            report = await self.engine.reconcile_now()
        self._emit(report)
        self._start_ticker()
        return report

    async def on_connectivity_changed(self, online: bool) -> SyncReport | None:
        """Forward a connectivity change and start or stop the ticker."""
        was_online = self.engine.online
        report = await self.engine.on_connectivity_changed(online)
        if report is not None:
            self._emit(report)
        if online and not was_online:
            self._start_ticker()
        elif not online and was_online:
            await self._stop_ticker()
        return report

    async def stop(self) -> None:
        """Cancel the periodic task and wait for it to finish."""
        await self._stop_ticker()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _probe(self) -> bool:
        try:
            result = self._check_online()
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        except Exception as exc:
            logger.warning("Connectivity check failed, assuming offline: %s", exc)
            return False

    async def _reconcile(self) -> SyncReport:
        report = await self.engine.reconcile_now()
        self._emit(report)
        return report

    def _emit(self, report: SyncReport) -> None:
        if report.skipped or self._on_report is None:
            return
        try:
            self._on_report(report)
        except Exception:
            logger.exception("Report callback failed")

    def _start_ticker(self) -> None:
        if self.running:
            return
        self._ticker = asyncio.create_task(
            self._tick_forever(), name="school-sync-ticker"
        )
        logger.debug("Periodic sync every %.1fs", self.interval)

    async def _stop_ticker(self) -> None:
        ticker, self._ticker = self._ticker, None
        await cancel_task(ticker)

    async def _tick_forever(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            if not self.engine.online:
                continue
            try:
                report = await self._reconcile()
            except Exception:
                logger.exception("Periodic sync failed")
                continue
            if report.halted:
                logger.info(
                    "Periodic sync halted with %d operation(s) queued",
                    report.remaining,
                )
