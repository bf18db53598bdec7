"""
Driver status endpoints
=======================

GET  /api/v1/drivers/me                             -- the caller's driver record
POST /api/v1/drivers/me/online                      -- start receiving rounds
POST /api/v1/drivers/me/offline                     -- stop receiving rounds
POST /api/v1/drivers/me/orders/{order_id}/complete  -- finish the order in progress

Rounds only go to drivers who are online and have nothing in progress.
"""

from fastapi import APIRouter, Depends, Path, Request

from orderclaim.api.dependencies import get_coordinator, get_current_driver_id, get_store
from orderclaim.api.middleware import limiter, rpc_errors
from orderclaim.api.schemas import DriverResponse, ErrorResponse
from orderclaim.config import settings
from orderclaim.infrastructure.repositories import OrderAssignmentStore
from orderclaim.services.coordinator import ClaimCoordinator

router = APIRouter(prefix="/drivers", tags=["drivers"])

_ERRORS = {
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.get(
    "/me",
    response_model=DriverResponse,
    summary="Fetch the caller's driver record",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def get_me(
    request: Request,
    driver_id: str = Depends(get_current_driver_id),
    store: OrderAssignmentStore = Depends(get_store),
):
    with rpc_errors("getDriver", "own record", driver_id):
        record = await store.get_driver(driver_id)
    return DriverResponse.from_record(record)


@router.post(
    "/me/online",
    response_model=DriverResponse,
    summary="Go online",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def go_online(
    request: Request,
    driver_id: str = Depends(get_current_driver_id),
    coordinator: ClaimCoordinator = Depends(get_coordinator),
):
    with rpc_errors("goOnline", "own record", driver_id):
        record = await coordinator.go_online(driver_id)
    return DriverResponse.from_record(record)


@router.post(
    "/me/offline",
    response_model=DriverResponse,
    summary="Go offline",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def go_offline(
    request: Request,
    driver_id: str = Depends(get_current_driver_id),
    coordinator: ClaimCoordinator = Depends(get_coordinator),
):
    with rpc_errors("goOffline", "own record", driver_id):
        record = await coordinator.go_offline(driver_id)
    return DriverResponse.from_record(record)


@router.post(
    "/me/orders/{order_id}/complete",
    response_model=DriverResponse,
    summary="Complete the order in progress",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def complete_order(
    request: Request,
    order_id: str = Path(..., min_length=1, max_length=64),
    driver_id: str = Depends(get_current_driver_id),
    coordinator: ClaimCoordinator = Depends(get_coordinator),
):
    with rpc_errors("completeOrder", f"order {order_id}", driver_id):
        record = await coordinator.complete_order(order_id, driver_id)
    return DriverResponse.from_record(record)
