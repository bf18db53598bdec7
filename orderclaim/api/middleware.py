"""Request rate limiting (per client address) and error translation for driver calls."""

import logging
from contextlib import contextmanager

from slowapi import Limiter
from slowapi.util import get_remote_address

from orderclaim.config import settings
from orderclaim.domain.errors import ClaimError, Internal

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])


@contextmanager
def rpc_errors(operation: str, subject: str, driver_id: str):
    """Pass typed errors through; anything else becomes an opaque Internal."""
    try:
        yield
    except ClaimError:
        raise
    except Exception as exc:
        logger.exception("%s failed for %s, driver %s", operation, subject, driver_id)
        raise Internal() from exc
