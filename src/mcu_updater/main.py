"""FastAPI application for the MCU firmware updater."""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
import uvicorn

from mcu_updater.api.context import UpdaterContext
from mcu_updater.api.routes import router
from mcu_updater.models.config import UpgradeConfiguration
from mcu_updater.services.transport import HttpTransport
from mcu_updater.utils.logging import setup_logger

HOST = "0.0.0.0"
PORT = 12316
BRIDGE_URL = os.environ.get("MCU_UPDATER_BRIDGE_URL", "http://localhost:9080")
CALLBACK_URL = os.environ.get("MCU_UPDATER_CALLBACK_URL")
# nRF52840 requires ~10 seconds for swapping images; adjust for your device
SWAP_TIME = float(os.environ.get("MCU_UPDATER_SWAP_TIME", "10.0"))


def create_app(context: Optional[UpdaterContext] = None) -> FastAPI:
    """Build the application.

    Args:
        context: Prebuilt context (tests); by default one is created at
            startup around an HttpTransport to BRIDGE_URL
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup: logger and context. Shutdown: flush reports, close transport."""
        logger = setup_logger("mcu_updater", "./logs/mcu_updater.log", level=logging.INFO)
        logger.info("MCU Updater starting up...")

        ctx = context
        if ctx is None:
            ctx = UpdaterContext(
                HttpTransport(BRIDGE_URL),
                configuration=UpgradeConfiguration(estimated_swap_time=SWAP_TIME),
                callback_url=CALLBACK_URL,
            )
            logger.info(f"Using device bridge at {BRIDGE_URL}")
        app.state.context = ctx

        logger.info(f"MCU Updater ready on port {PORT}")

        yield

        logger.info("MCU Updater shutting down...")
        if ctx.manager.is_running:
            logger.warning("Shutting down with an upgrade in progress, cancelling")
            ctx.manager.cancel()
        await ctx.aclose()

    app = FastAPI(
        title="MCU Firmware Updater",
        description="Multi-image firmware upgrade service for MCUboot devices",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.include_router(router)

    @app.get("/")
    async def root():
        """Health check endpoint."""
        return {"status": "ok", "service": "mcu-updater", "version": "1.0.0"}

    return app


app = create_app()


def main():
    """Main entry point for running the server."""
    uvicorn.run(
        app,
        host=HOST,
        port=PORT,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
