"""
Driver endpoints
================

POST /api/v1/orders/{order_id}/claim  -- accept an offer (first claim wins)
POST /api/v1/orders/{order_id}/reject -- decline an offer
GET  /api/v1/orders/{order_id}        -- order as seen by one of its candidates

The caller's driver id comes from the bearer token, never from the body.
"""

from fastapi import APIRouter, Depends, Path, Request

from orderclaim.api.dependencies import get_coordinator, get_current_driver_id
from orderclaim.api.middleware import limiter, rpc_errors
from orderclaim.api.schemas import ClaimResponse, ErrorResponse, OrderResponse, RejectResponse
from orderclaim.config import settings
from orderclaim.domain.enums import ClaimOutcome
from orderclaim.services.coordinator import ClaimCoordinator

router = APIRouter(prefix="/orders", tags=["orders"])

_ERRORS = {
    401: {"model": ErrorResponse},
    403: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.post(
    "/{order_id}/claim",
    response_model=ClaimResponse,
    response_model_exclude_none=True,
    summary="Claim an offered order",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def claim_order(
    request: Request,
    order_id: str = Path(..., min_length=1, max_length=64),
    driver_id: str = Depends(get_current_driver_id),
    coordinator: ClaimCoordinator = Depends(get_coordinator),
):
    with rpc_errors("claimOrder", f"order {order_id}", driver_id):
        outcome = await coordinator.claim(order_id, driver_id)

    if outcome is ClaimOutcome.SUCCESS:
        return ClaimResponse(success=True, message="Order claimed successfully")
    return ClaimResponse(success=False, already_taken=True, message="Order already taken")


@router.post(
    "/{order_id}/reject",
    response_model=RejectResponse,
    response_model_exclude_none=True,
    summary="Reject an offered order",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def reject_order(
    request: Request,
    order_id: str = Path(..., min_length=1, max_length=64),
    driver_id: str = Depends(get_current_driver_id),
    coordinator: ClaimCoordinator = Depends(get_coordinator),
):
    with rpc_errors("rejectOrder", f"order {order_id}", driver_id):
        await coordinator.reject(order_id, driver_id)
    return RejectResponse(success=True, message="Order rejected")


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Fetch an order the caller was offered",
    responses=_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def get_order(
    request: Request,
    order_id: str = Path(..., min_length=1, max_length=64),
    driver_id: str = Depends(get_current_driver_id),
    coordinator: ClaimCoordinator = Depends(get_coordinator),
):
    with rpc_errors("getOrder", f"order {order_id}", driver_id):
        order = await coordinator.view_order(order_id, driver_id)
    return OrderResponse.model_validate(order)
