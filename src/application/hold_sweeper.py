# src/application/hold_sweeper.py
"""
Background task that flips stale seat holds to `expired`.

Holds stop blocking inventory on their own once the timeout passes; the
sweep only keeps the seat_holds table honest for operators.
"""

import asyncio
import logging
from typing import Callable

from sqlalchemy.orm import Session

from src.application.hold_manager import HoldManager
from src.config import Settings, get_settings
from src.infrastructure.db.session import SessionLocal


logger = logging.getLogger(__name__)


class HoldSweeper:

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.running = False
        self.task: asyncio.Task | None = None

    @property
    def interval(self) -> float:
        return self.settings.hold_sweep_interval_seconds

    async def start(self) -> None:
        if self.running:
            logger.warning("Hold sweeper already running")
            return
        if self.interval <= 0:
            logger.info("Hold sweeper disabled (HOLD_SWEEP_INTERVAL_SECONDS=%s)", self.interval)
            return

        self.running = True
        self.task = asyncio.create_task(self._run())
        logger.info("Hold sweeper started (interval: %ss)", self.interval)

    async def stop(self) -> None:
        if not self.running:
            return

        self.running = False
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        logger.info("Hold sweeper stopped")

    async def _run(self) -> None:
        while self.running:
            try:
                await asyncio.to_thread(self.sweep_once)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Hold sweep failed")
            await asyncio.sleep(self.interval)

    def sweep_once(self) -> int:
        db = self.session_factory()
        try:
            expired = HoldManager(db, self.settings).sweep_expired_holds()
            db.commit()
            return expired
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


hold_sweeper = HoldSweeper()
