#!/usr/bin/env python3
"""
Escrow Release Worker

Startup sequence: configuration, database, payment gateway, ledger, then the
periodic release sweep. Runs until interrupted.
"""

import asyncio
import logging
import sys
from typing import Optional

from config import Config, EscrowSettings
from database import create_database_engine, create_session_factory, create_tables, test_connection
from jobs.release_sweep_scheduler import ReleaseSweepScheduler
from services.escrow_ledger import EscrowLedger
from services.payment_gateway import HttpPaymentGateway
from services.release_scheduler import ReleaseScheduler

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


class ReleaseWorker:
    """Deterministic startup and shutdown of the release sweep process"""

    def __init__(self):
        self.engine = None
        self.ledger: Optional[EscrowLedger] = None
        self.sweep_scheduler: Optional[ReleaseSweepScheduler] = None
        self.gateway: Optional[HttpPaymentGateway] = None

    async def initialize_database(self) -> bool:
        try:
            logger.info("🗄️ Initializing database...")
            self.engine = create_database_engine()
            if not await test_connection(self.engine):
                raise RuntimeError("Database connection test failed")
            await create_tables(self.engine)
            logger.info("✅ Database initialization complete")
            return True
        except Exception as e:
            logger.error(f"❌ Database initialization failed: {e}")
            return False

    def initialize_services(self):
        settings = EscrowSettings.from_config()
        session_factory = create_session_factory(self.engine)
        self.gateway = HttpPaymentGateway()
        self.ledger = EscrowLedger(session_factory, self.gateway, settings=settings)
        release_scheduler = ReleaseScheduler(self.ledger, session_factory, settings=settings)
        self.sweep_scheduler = ReleaseSweepScheduler(release_scheduler)
        logger.info("✅ Escrow ledger and release scheduler initialized")

    async def startup_sequence(self) -> bool:
        logger.info("🚀 Starting escrow release worker...")
        try:
            Config.validate_escrow_configuration()
        except ValueError as e:
            logger.error(f"❌ Configuration invalid: {e}")
            return False
        Config.log_escrow_configuration()

        if not await self.initialize_database():
            return False

        self.initialize_services()

        if Config.RELEASE_SWEEP_ENABLED:
            self.sweep_scheduler.start()
        else:
            logger.warning("⚠️ RELEASE_SWEEP_ENABLED is false - sweep job not scheduled")
        return True

    async def shutdown(self):
        if self.sweep_scheduler:
            self.sweep_scheduler.shutdown()
        if self.engine is not None:
            await self.engine.dispose()
        logger.info("👋 Escrow release worker stopped")


async def main():
    worker = ReleaseWorker()
    try:
        if not await worker.startup_sequence():
            logger.error("❌ Startup failed - exiting")
            sys.exit(1)

        logger.info("🎉 Escrow release worker running")
        await asyncio.Event().wait()
    finally:
        await worker.shutdown()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("👋 Worker stopped by user")
    except Exception as e:
        logger.error(f"❌ Fatal error: {e}")
        sys.exit(1)
