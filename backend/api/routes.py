"""
PodWrt API routes

Provides REST endpoints for:
- Auto-update: candidate listing, no-pull update checks, sequential updates
- OpenWrt integration of Podman networks: status, setup, removal, validation

The services are created in the application lifespan and stored on
app.state; routes receive them through get_auto_updater/get_integration so
tests can override them.
"""

import logging
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from models.request_models import AutoUpdateRunRequest, IntegrationRequest, IntegrationValidateRequest
from openwrt.integration import IntegrationOptions, IntegrationSetupError, OpenWrtNetworkIntegration
from rpc.podman import PodmanRPCError
from rpc.ubus import UbusError, UbusUnavailable
from updates.auto_update import AutoUpdater
from updates.types import AutoUpdateError
from utils.network_helpers import bridge_name_for

logger = logging.getLogger(__name__)

# Create routers
auto_update_router = APIRouter(prefix="/api/auto-update", tags=["auto-update"])
network_router = APIRouter(prefix="/api/networks", tags=["networks"])


# ==================== Dependencies ====================

def get_auto_updater(request: Request) -> AutoUpdater:
    """Get the auto-updater created at startup"""
    updater = getattr(request.app.state, "auto_updater", None)
    if updater is None:
        raise HTTPException(status_code=503, detail="Auto-updater not initialized")
    return updater


def get_integration(request: Request) -> OpenWrtNetworkIntegration:
    """Get the OpenWrt network integration created at startup"""
    integration = getattr(request.app.state, "integration", None)
    if integration is None:
        raise HTTPException(status_code=503, detail="OpenWrt integration not initialized")
    return integration


def _backend_error(action: str, e: Exception) -> HTTPException:
    """Map an RPC/backend failure to an HTTP error"""
    if isinstance(e, UbusUnavailable):
        logger.error(f"{action}: ubus unavailable: {e}")
        return HTTPException(status_code=503, detail=str(e))

    if isinstance(e, (AutoUpdateError, PodmanRPCError, UbusError)):
        logger.error(f"{action}: {e}")
        return HTTPException(status_code=502, detail=str(e))

    logger.error(f"{action}: {e}", exc_info=True)
    return HTTPException(status_code=500, detail=f"{action}: {e}")


# ==================== Auto-Update ====================

@auto_update_router.get("/containers")
async def list_auto_update_containers(updater: AutoUpdater = Depends(get_auto_updater)):
    """List containers carrying the io.containers.autoupdate label"""
    try:
        containers = await updater.get_auto_update_containers()
    except Exception as e:
        raise _backend_error("Failed to list auto-update containers", e)

    return {"containers": [asdict(c) for c in containers]}


@auto_update_router.post("/check")
async def check_auto_updates(updater: AutoUpdater = Depends(get_auto_updater)):
    """
    Check all auto-update containers for newer images.

    Nothing is pulled; a container whose check failed is reported with its
    error and has_update=false.
    """
    try:
        results = await updater.check_all()
    except Exception as e:
        raise _backend_error("Failed to check for updates", e)

    return {
        "results": [asdict(r) for r in results],
        "updates_available": len(updater.updates_available(results)),
    }


@auto_update_router.post("/run")
async def run_auto_updates(request: AutoUpdateRunRequest, updater: AutoUpdater = Depends(get_auto_updater)):
    """
    Update containers one at a time and wait for the batch to finish.

    Per-container failures are part of the response, not an HTTP error.
    """
    logger.info(f"Auto-update requested for {len(request.containers)} container(s)")

    try:
        batch = await updater.update_containers(request.containers)
    except Exception as e:
        raise _backend_error("Auto-update failed", e)

    return asdict(batch)


# ==================== OpenWrt Integration ====================

@network_router.post("/integration/validate")
async def validate_integration(
    request: IntegrationValidateRequest,
    integration: OpenWrtNetworkIntegration = Depends(get_integration),
):
    """Pre-flight check of integration options"""
    options = IntegrationOptions(
        bridge_name=request.bridge_name,
        subnet=request.subnet,
        gateway=request.gateway,
        ipv6subnet=request.ipv6subnet,
        ipv6gateway=request.ipv6gateway,
    )
    result = await integration.validate_integration(request.network_name, options)
    return asdict(result)


@network_router.get("/{network_name}/integration")
async def get_network_integration(
    network_name: str,
    integration: OpenWrtNetworkIntegration = Depends(get_integration),
):
    """Persisted integration fields and which components are missing"""
    current = await integration.get_integration(network_name)
    integration_status = await integration.is_integration_complete(network_name)

    return {
        "integration": asdict(current) if current else None,
        "status": asdict(integration_status),
    }


@network_router.post("/{network_name}/integration")
async def create_network_integration(
    network_name: str,
    request: Optional[IntegrationRequest] = None,
    integration: OpenWrtNetworkIntegration = Depends(get_integration),
):
    """
    Create the OpenWrt integration for a Podman network.

    Without a subnet in the body, addressing is taken from the Podman
    network's IPAM configuration; bridge_name and ipv6 still apply.
    """
    request = request or IntegrationRequest()
    options = None
    if request.subnet:
        options = IntegrationOptions(
            bridge_name=request.bridge_name or bridge_name_for(network_name),
            subnet=request.subnet,
            gateway=request.gateway,
            ipv6subnet=request.ipv6subnet,
            ipv6gateway=request.ipv6gateway,
        )

    try:
        applied = await integration.setup_for_network(
            network_name, options, bridge_name=request.bridge_name, ipv6=request.ipv6,
        )
    except IntegrationSetupError as e:
        logger.warning(f"Integration setup for {network_name} rejected: {e} {e.errors}")
        raise HTTPException(status_code=400, detail={"message": str(e), "errors": e.errors})
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"message": str(e), "errors": []})
    except Exception as e:
        raise _backend_error(f"Failed to set up integration for {network_name}", e)

    return {"network_name": network_name, "options": asdict(applied)}


@network_router.delete("/{network_name}/integration", status_code=status.HTTP_204_NO_CONTENT)
async def delete_network_integration(
    network_name: str,
    bridge_name: Optional[str] = Query(None, max_length=15),
    integration: OpenWrtNetworkIntegration = Depends(get_integration),
):
    """Remove a network's interface, zone membership and unshared bridge"""
    try:
        await integration.remove_integration(network_name, bridge_name or bridge_name_for(network_name))
    except Exception as e:
        raise _backend_error(f"Failed to remove integration for {network_name}", e)

    return Response(status_code=status.HTTP_204_NO_CONTENT)
