"""FastAPI dependency injection helpers."""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from orderclaim.api.security import decode_access_token
from orderclaim.domain.errors import PermissionDenied, Unauthenticated
from orderclaim.infrastructure.database import async_session_factory
from orderclaim.infrastructure.driver_feed import RedisDriverFeed
from orderclaim.infrastructure.redis_client import get_redis
from orderclaim.infrastructure.repositories import (
    OrderAssignmentStore,
    SqlAlchemyAssignmentStore,
)
from orderclaim.services.coordinator import ClaimCoordinator
from orderclaim.services.dispatch import AssignmentRoundDispatcher
from orderclaim.services.notifications import NotificationDispatcher

bearer = HTTPBearer(auto_error=False)

_store: Optional[OrderAssignmentStore] = None


async def get_store() -> OrderAssignmentStore:
    """Process-wide store; every transaction opens its own DB session."""
    global _store
    if _store is None:
        _store = SqlAlchemyAssignmentStore(
            async_session_factory, feed=RedisDriverFeed(await get_redis())
        )
    return _store


async def get_coordinator(
    store: OrderAssignmentStore = Depends(get_store),
) -> ClaimCoordinator:
    return ClaimCoordinator(store)


async def get_round_dispatcher(
    store: OrderAssignmentStore = Depends(get_store),
) -> AssignmentRoundDispatcher:
    return AssignmentRoundDispatcher(store, NotificationDispatcher(await get_redis()))


def _token_payload(credentials: Optional[HTTPAuthorizationCredentials]) -> dict:
    if credentials is None:
        raise Unauthenticated()
    payload = decode_access_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise Unauthenticated("Could not validate credentials")
    return payload


async def get_current_driver_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> str:
    """The verified caller identity, used as the driver id."""
    return str(_token_payload(credentials)["sub"])


async def require_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer),
) -> dict:
    payload = _token_payload(credentials)
    if payload.get("role") != "admin":
        raise PermissionDenied("Admin role required")
    return payload
