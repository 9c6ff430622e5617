"""FastAPI application for the firmware update verifier."""

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
import uvicorn

from fwverify.utils.logging import setup_logger
from fwverify.models.config import load_config
from fwverify.services.controller import HttpDeviceController, StaticInventory
from fwverify.services.coordinator import BatchCoordinator
from fwverify.services.reporter import ReportService
from fwverify.services.state_manager import StateManager
from fwverify.api.routes import router

CONFIG_PATH = Path("./config/verifier.json")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown hooks.

    Startup:
    - Load configuration
    - Initialize logger
    - Build the coordinator and its collaborators
    - Initialize StateManager singleton and reload the last report
    """
    config = load_config(CONFIG_PATH)
    logger = setup_logger(
        "fwverify",
        config.log_file,
        max_bytes=config.log_max_bytes,
        backup_count=config.log_backup_count,
        level=config.log_level,
    )
    logger.info("Firmware verifier starting up...")

    controller = HttpDeviceController(
        base_url=config.chassis_url,
        username=config.username,
        password=config.password,
        timeout=config.rpc_timeout,
    )
    inventory = StaticInventory(config.devices, kind=config.device_kind)
    app.state.coordinator = BatchCoordinator(controller, inventory, config)
    app.state.reporter = ReportService(config.callback_url)
    app.state.start_lock = asyncio.Lock()

    state_manager = StateManager(config.report_path)
    report = state_manager.load_report()
    if report:
        logger.info(f"Last report: {report.summary()}")
    else:
        logger.info("No previous report found, starting fresh")

    logger.info(f"Firmware verifier ready, chassis manager at {config.chassis_url}")

    yield

    logger.info("Firmware verifier shutting down...")


app = FastAPI(
    title="Firmware Update Verifier",
    description="Verifies dual-image firmware updates on chassis devices",
    version="1.0.0",
    lifespan=lifespan,
)

app.include_router(router)


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "fw-verifier", "version": "1.0.0"}


def main():
    """Main entry point for running the server."""
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=12316,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
