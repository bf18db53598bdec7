"""
Offer modal state machine.

    IDLE --present--> OFFERED --accept / reject / timer--> RESOLVING --> RESOLVED

* One controller per offer; a resolved controller is never reused.
* The countdown is a single task per controller.  Whichever trigger
  (accept, reject, timer) reaches ``_begin`` first moves the controller to
  RESOLVING before its first ``await``, so every later trigger sees a
  non-OFFERED state and is ignored.
* A retryable transport error keeps RESOLVING and waits for the driver to
  ``retry()`` the same action, up to ``max_retries`` times.  The countdown
  is not restarted.  ALREADY_TAKEN is final and never retried.

``OfferLoop`` connects the watcher's outbox to controllers: each new offer
gets a fresh controller, and an offer that disappears while still on
screen is withdrawn.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
from typing import Any, Callable, Optional

from orderclaim.client.watcher import Offer
from orderclaim.config import settings
from orderclaim.domain.enums import ClaimOutcome
from orderclaim.domain.errors import ClaimError

logger = logging.getLogger(__name__)

GENERIC_FAILURE = "This offer is no longer available."


class ControllerState(str, enum.Enum):
    IDLE = "IDLE"
    OFFERED = "OFFERED"
    RESOLVING = "RESOLVING"
    RESOLVED = "RESOLVED"


class Action(str, enum.Enum):
    ACCEPT = "ACCEPT"
    REJECT = "REJECT"


class Resolution(str, enum.Enum):
    CLAIMED = "CLAIMED"
    REJECTED = "REJECTED"
    AUTO_REJECTED = "AUTO_REJECTED"
    TAKEN = "TAKEN"  # lost the race to another driver
    WITHDRAWN = "WITHDRAWN"  # offer vanished before the driver answered
    FAILED = "FAILED"


class ModalTimeoutController:
    def __init__(
        self,
        client: Any,
        timeout_seconds: float = settings.offer_timeout_seconds,
        max_retries: int = settings.max_claim_retries,
        tick_seconds: float = 1.0,
        on_change: Optional[Callable[["ModalTimeoutController"], None]] = None,
    ):
        # client: anything with async claim_order / reject_order
        self.client = client
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.tick_seconds = tick_seconds
        self.on_change = on_change

        self.state = ControllerState.IDLE
        self.offer: Optional[Offer] = None
        self.remaining_seconds = math.ceil(timeout_seconds)
        self.pending_action: Optional[Action] = None
        self.awaiting_retry = False
        self.attempts = 0
        self.resolution: Optional[Resolution] = None
        self.message: Optional[str] = None
        self.last_error: Optional[ClaimError] = None

        self._auto = False
        self._timer: Optional[asyncio.Task] = None
        self._resolved = asyncio.Event()

    # ── Triggers ─────────────────────────────────────────────────────

    def present(self, offer: Offer) -> None:
        if self.state is not ControllerState.IDLE:
            raise RuntimeError("A controller handles exactly one offer")
        self.offer = offer
        self.state = ControllerState.OFFERED
        self._timer = asyncio.create_task(self._countdown())
        self._notify()

    async def accept(self) -> None:
        await self._begin(Action.ACCEPT)

    async def reject(self) -> None:
        await self._begin(Action.REJECT)

    async def retry(self) -> None:
        if self.state is not ControllerState.RESOLVING or not self.awaiting_retry:
            logger.debug("Ignoring retry in state %s", self.state.value)
            return
        await self._submit()

    def withdraw(self) -> None:
        """The offer disappeared; close it if the driver has not answered."""
        if self.state is ControllerState.OFFERED:
            self._resolve(Resolution.WITHDRAWN, GENERIC_FAILURE)

    async def wait(self) -> Resolution:
        await self._resolved.wait()
        return self.resolution

    def close(self) -> None:
        self._stop_timer()

    # ── Internals ────────────────────────────────────────────────────

    async def _countdown(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_seconds
        while True:
            left = deadline - loop.time()
            if left <= 0:
                break
            self.remaining_seconds = math.ceil(left)
            self._notify()
            await asyncio.sleep(min(self.tick_seconds, left))
        self.remaining_seconds = 0
        logger.info("Offer for order %s timed out, auto-rejecting", self.offer.order_id)
        await self._begin(Action.REJECT, auto=True)

    async def _begin(self, action: Action, auto: bool = False) -> None:
        if self.state is not ControllerState.OFFERED:
            logger.debug("Ignoring %s in state %s", action.value, self.state.value)
            return
        self.state = ControllerState.RESOLVING
        self.pending_action = action
        self._auto = auto
        self._stop_timer()
        self._notify()
        await self._submit()

    async def _submit(self) -> None:
        order_id = self.offer.order_id
        action = self.pending_action
        self.awaiting_retry = False
        self.attempts += 1
        try:
            if action is Action.ACCEPT:
                outcome = await self.client.claim_order(order_id)
            else:
                outcome = await self.client.reject_order(order_id)
        except ClaimError as exc:
            self.last_error = exc
            if exc.retryable and self.attempts <= self.max_retries:
                logger.info(
                    "%s of order %s failed (%s), retry %d/%d available",
                    action.value, order_id, exc.code, self.attempts, self.max_retries,
                )
                self.awaiting_retry = True
                self.message = exc.message
                self._notify()
                return
            logger.warning("%s of order %s failed: %s", action.value, order_id, exc.code)
            self._resolve(Resolution.FAILED, exc.message if exc.retryable else GENERIC_FAILURE)
            return
        except Exception:
            logger.exception("%s of order %s failed unexpectedly", action.value, order_id)
            self._resolve(Resolution.FAILED, GENERIC_FAILURE)
            return

        if outcome is ClaimOutcome.ALREADY_TAKEN:
            self._resolve(Resolution.TAKEN, "Order already taken by another driver")
        elif action is Action.ACCEPT:
            self._resolve(Resolution.CLAIMED, "Order claimed successfully")
        elif self._auto:
            self._resolve(Resolution.AUTO_REJECTED, "Offer expired")
        else:
            self._resolve(Resolution.REJECTED, "Order rejected")

    def _resolve(self, resolution: Resolution, message: str) -> None:
        self.state = ControllerState.RESOLVED
        self.resolution = resolution
        self.message = message
        self.awaiting_retry = False
        self._stop_timer()
        self._resolved.set()
        self._notify()

    def _stop_timer(self) -> None:
        if self._timer is not None and self._timer is not asyncio.current_task():
            self._timer.cancel()

    def _notify(self) -> None:
        if self.on_change is not None:
            self.on_change(self)


class OfferLoop:
    """Feeds watcher messages into one controller per offer."""

    def __init__(
        self,
        offers: asyncio.Queue,
        client: Any,
        on_controller: Optional[Callable[[ModalTimeoutController], None]] = None,
        **controller_options: Any,
    ):
        self.offers = offers
        self.client = client
        self.on_controller = on_controller
        self.controller_options = controller_options
        self.current: Optional[ModalTimeoutController] = None

    async def run(self) -> None:
        try:
            while True:
                self.handle(await self.offers.get())
        finally:
            if self.current is not None:
                self.current.close()

    def handle(self, offer: Optional[Offer]) -> None:
        current = self.current
        if offer is None:
            if current is not None:
                current.withdraw()
            return
        if (
            current is not None
            and current.state is not ControllerState.RESOLVED
            and current.offer.order_id == offer.order_id
        ):
            return
        if current is not None:
            current.withdraw()

        controller = ModalTimeoutController(self.client, **self.controller_options)
        controller.present(offer)
        self.current = controller
        if self.on_controller is not None:
            self.on_controller(controller)
