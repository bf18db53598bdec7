"""
Admin / observability endpoints
===============================

POST /api/v1/admin/orders                    -- register an order (PENDING)
POST /api/v1/admin/drivers                   -- register a driver
POST /api/v1/admin/orders/{order_id}/round   -- offer an order to ranked candidates
GET  /api/v1/admin/orders/{order_id}         -- any order, with every assignment
GET  /api/v1/admin/drivers/{driver_id}       -- driver record
GET  /api/v1/admin/health                    -- simple health check
"""

from fastapi import APIRouter, Depends, Path, Request

from orderclaim.api.dependencies import get_round_dispatcher, get_store, require_admin
from orderclaim.api.middleware import limiter
from orderclaim.api.schemas import (
    DriverCreateRequest,
    DriverResponse,
    HealthResponse,
    OpenRoundRequest,
    OrderCreateRequest,
    OrderResponse,
)
from orderclaim.config import settings
from orderclaim.domain.entities import Candidate, DriverRecord, Order
from orderclaim.infrastructure.repositories import OrderAssignmentStore
from orderclaim.services.dispatch import AssignmentRoundDispatcher

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post(
    "/orders",
    status_code=201,
    response_model=OrderResponse,
    summary="Register a new order awaiting assignment",
)
@limiter.limit(settings.rate_limit)
async def create_order(
    request: Request,
    body: OrderCreateRequest,
    _admin: dict = Depends(require_admin),
    store: OrderAssignmentStore = Depends(get_store),
):
    order = await store.add_order(Order(id=body.id, details=body.details))
    return OrderResponse.model_validate(order)


@router.post(
    "/drivers",
    status_code=201,
    response_model=DriverResponse,
    summary="Register a driver",
)
@limiter.limit(settings.rate_limit)
async def create_driver(
    request: Request,
    body: DriverCreateRequest,
    _admin: dict = Depends(require_admin),
    store: OrderAssignmentStore = Depends(get_store),
):
    record = await store.add_driver(DriverRecord(id=body.id, is_active=body.is_active))
    return DriverResponse.from_record(record)


@router.post(
    "/orders/{order_id}/round",
    response_model=OrderResponse,
    summary="Offer an order to a ranked list of candidate drivers",
)
@limiter.limit(settings.rate_limit)
async def open_round(
    request: Request,
    body: OpenRoundRequest,
    order_id: str = Path(..., min_length=1, max_length=64),
    _admin: dict = Depends(require_admin),
    dispatcher: AssignmentRoundDispatcher = Depends(get_round_dispatcher),
):
    candidates = [
        Candidate(
            driver_id=c.driver_id,
            estimated_distance=c.estimated_distance,
            estimated_time=c.estimated_time,
        )
        for c in body.candidates
    ]
    order = await dispatcher.open_round(order_id, candidates)
    return OrderResponse.model_validate(order)


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    summary="Fetch any order",
)
@limiter.limit(settings.rate_limit)
async def get_order(
    request: Request,
    order_id: str = Path(..., min_length=1, max_length=64),
    _admin: dict = Depends(require_admin),
    store: OrderAssignmentStore = Depends(get_store),
):
    return OrderResponse.model_validate(await store.get_order(order_id))


@router.get(
    "/drivers/{driver_id}",
    response_model=DriverResponse,
    summary="Fetch a driver record",
)
@limiter.limit(settings.rate_limit)
async def get_driver(
    request: Request,
    driver_id: str = Path(..., min_length=1, max_length=64),
    _admin: dict = Depends(require_admin),
    store: OrderAssignmentStore = Depends(get_store),
):
    return DriverResponse.from_record(await store.get_driver(driver_id))


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
