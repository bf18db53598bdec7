"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from orderclaim.domain.entities import DriverRecord
from orderclaim.domain.enums import AssignmentStatus, OrderStatus


# ── Requests ──────────────────────────────────────────────────────────


class CandidateRequest(BaseModel):
    driver_id: str = Field(..., min_length=1, max_length=64)
    estimated_distance: float = Field(0.0, ge=0, description="Kilometres to pickup.")
    estimated_time: str = Field("", max_length=32, description="Display ETA, e.g. '12 min'.")


class OpenRoundRequest(BaseModel):
    candidates: list[CandidateRequest] = Field(
        ...,
        min_length=1,
        description="Drivers to offer the order to, already ranked upstream.",
    )


class OrderCreateRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    details: dict[str, Any] = Field(default_factory=dict)


class DriverCreateRequest(BaseModel):
    id: str = Field(..., min_length=1, max_length=64)
    is_active: bool = True


# ── Responses ─────────────────────────────────────────────────────────


class ClaimResponse(BaseModel):
    success: bool
    already_taken: Optional[bool] = Field(None, alias="alreadyTaken")
    message: Optional[str] = None

    model_config = {"populate_by_name": True}


class RejectResponse(BaseModel):
    success: bool
    message: Optional[str] = None


class AssignmentResponse(BaseModel):
    driver_id: str
    status: AssignmentStatus
    assigned_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    estimated_distance: float = 0.0
    estimated_time: str = ""

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: str
    status: OrderStatus
    assignments: list[AssignmentResponse] = []
    assigned_driver_id: Optional[str] = None
    claimed_at: Optional[datetime] = None
    details: dict[str, Any] = {}

    model_config = {"from_attributes": True}


class DriverResponse(BaseModel):
    id: str
    offer_order_id: Optional[str] = None
    in_progress_order_id: Optional[str] = None
    is_active: bool

    @classmethod
    def from_record(cls, record: DriverRecord) -> "DriverResponse":
        return cls(
            id=record.id,
            offer_order_id=record.offer_ref.order_id if record.offer_ref else None,
            in_progress_order_id=record.in_progress_order_id,
            is_active=record.is_active,
        )


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    code: str
    message: str
