#!/usr/bin/env python3
"""
PodWrt Backend - Podman management for OpenWrt routers

Talks to the router exclusively through the ubus JSON-RPC endpoint:
- luci.podman (rpcd plugin wrapping the Podman REST API) for containers,
  images, networks and streaming pull sessions
- uci / network.interface for the network and firewall configuration that
  makes Podman networks routable
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.routes import auto_update_router, network_router
from config.settings import AppConfig, setup_logging
from openwrt.integration import OpenWrtNetworkIntegration
from openwrt.network_state import NetworkState
from openwrt.uci import UciSession
from rpc.podman import PodmanRPC
from rpc.ubus import UbusClient
from updates.auto_update import AutoUpdater
from updates.pull_session import PullSessionClient

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    # Startup
    setup_logging()

    # Validate configuration early to fail fast on misconfiguration
    AppConfig.validate()

    logger.info(f"Starting PodWrt backend (ubus at {AppConfig.UBUS_URL})...")

    ubus = UbusClient(
        AppConfig.UBUS_URL,
        username=AppConfig.UBUS_USERNAME,
        password=AppConfig.UBUS_PASSWORD,
        timeout=AppConfig.UBUS_TIMEOUT,
    )
    rpc = PodmanRPC(ubus)
    pull_client = PullSessionClient(rpc)

    app.state.ubus = ubus
    app.state.pull_client = pull_client
    app.state.auto_updater = AutoUpdater(rpc, pull_client)
    app.state.integration = OpenWrtNetworkIntegration(UciSession(ubus), NetworkState(ubus), rpc)
    logger.info("Auto-updater and OpenWrt integration initialized")

    yield
    # Shutdown
    logger.info("Shutting down PodWrt backend...")

    # Pulls still being polled would keep running on the router
    try:
        await pull_client.stop_all()
    except Exception as e:
        logger.error(f"Error stopping pull sessions: {e}")

    try:
        await ubus.close()
        logger.info("ubus client closed")
    except Exception as e:
        logger.error(f"Error closing ubus client: {e}")


app = FastAPI(
    title="PodWrt API",
    version="1.0.0",
    lifespan=lifespan
)


# Custom exception handler for Pydantic validation errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Custom handler for Pydantic validation errors.
    Returns user-friendly error messages with field-level details.
    """
    errors = []
    for error in exc.errors():
        field = " -> ".join(str(x) for x in error['loc'])
        errors.append({
            "field": field,
            "message": error['msg'],
            "type": error['type']
        })

    logger.warning(f"Validation failed for {request.url.path}: {errors}")

    return JSONResponse(
        status_code=422,
        content={
            "detail": "Invalid request data",
            "errors": errors
        }
    )


app.include_router(auto_update_router)
app.include_router(network_router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers and supervisors"""
    return {"status": "healthy", "service": "podwrt-backend"}


if __name__ == "__main__":
    uvicorn.run(app, host=AppConfig.HOST, port=AppConfig.PORT)
