"""
Debounced, cancellable shipping cost calculator.

Turns bursty cart/postcode changes into at most one outstanding call to the
shipping endpoint. The calculator is a small state machine::

    IDLE --update--> PENDING --timer--> IN_FLIGHT --response--> SETTLED
      ^                 |                   |                      |
      +----empty input--+-------------------+----------------------+

Any input change leaves the current phase, cancelling the pending timer and
the in-flight call. Every issued call gets its own ``CancellationToken``;
the active token is replaced, never reused, so a response is applied only
when it belongs to the most recently issued call.
"""

import asyncio
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from shared.errors import CalculationCancelledError, ShippingCalculationError
from shared.logging import get_logger
from .models import CalculationRequest, CalculationResult, CartItem


DEFAULT_DEBOUNCE_SECONDS = 0.5
GENERIC_ERROR_MESSAGE = "An error occurred while calculating shipping. Please try again."
FALLBACK_ERROR_MESSAGE = "We could not calculate the shipping cost."


class CalculatorPhase(Enum):
    IDLE = "idle"
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SETTLED = "settled"


class CancellationToken:
    """Identity of one issued calculation."""

    __slots__ = ("request", "_cancelled")

    def __init__(self, request: CalculationRequest):
        self.request = request
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self):
        self._cancelled = True

    def raise_if_cancelled(self):
        if self._cancelled:
            raise CalculationCancelledError()


@dataclass(frozen=True)
class ShippingState:
    """Snapshot exposed to consumers."""

    phase: CalculatorPhase = CalculatorPhase.IDLE
    result: Optional[CalculationResult] = None
    is_loading: bool = False
    error: Optional[str] = None

    @property
    def cost(self) -> float:
        return self.result.cost if self.result is not None else 0

    @property
    def is_free_shipping(self) -> bool:
        return self.result is not None and self.result.cost == 0


Fetcher = Callable[[CalculationRequest, CancellationToken], Awaitable[CalculationResult]]
Listener = Callable[[ShippingState], Any]


class ShippingCalculator:
    """Debounced front for a shipping cost ``fetcher``.

    ``fetcher(request, token)`` performs the downstream call. It should stop
    touching shared state once ``token.cancelled`` is set; the calculator
    also cancels its task and ignores whatever a superseded call returns.

    Must be used from a running event loop.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
    ):
        self._fetcher = fetcher
        self.debounce_seconds = debounce_seconds
        self.logger = get_logger("storefront.shipping_calculator")

        self._state = ShippingState()
        self._listeners: List[Listener] = []
        self._request: Optional[CalculationRequest] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._token: Optional[CancellationToken] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def state(self) -> ShippingState:
        return self._state

    @property
    def phase(self) -> CalculatorPhase:
        return self._state.phase

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for state snapshots; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, postcode: Optional[str], cart_items: Optional[Sequence[CartItem]], subtotal: float):
        """Record new inputs and (re)arm the debounce timer."""
        if self._closed:
            return

        request = CalculationRequest.build(postcode, cart_items, subtotal)
        if not request.is_complete:
            self._request = None
            self._cancel_pending()
            self._cancel_in_flight()
            self._set_state(ShippingState())
            return

        if request == self._request:
            return

        self._request = request
        self._cancel_pending()
        self._cancel_in_flight()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_seconds, self._on_timer, request)
        self._set_state(replace(self._state, phase=CalculatorPhase.PENDING, is_loading=False))

    def retry(self):
        """Issue the last complete request immediately, skipping the debounce."""
        if self._closed or self._request is None:
            return
        self._cancel_pending()
        self._issue(self._request)

    async def close(self):
        """Tear down: cancel the timer and any in-flight call."""
        if self._closed:
            return
        self._closed = True
        self._cancel_pending()
        task = self._task
        self._cancel_in_flight()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._listeners.clear()

    async def __aenter__(self) -> "ShippingCalculator":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _on_timer(self, request: CalculationRequest):
        self._timer = None
        if self._closed or request != self._request:
            return
        self._issue(request)

    def _issue(self, request: CalculationRequest):
        self._cancel_in_flight()
        token = CancellationToken(request)
        self._token = token
        self._set_state(replace(self._state, phase=CalculatorPhase.IN_FLIGHT, is_loading=True, error=None))
        self.logger.debug("Issuing shipping calculation", postcode=request.postcode, items=len(request.cart_items))
        self._task = asyncio.ensure_future(self._run(token))

    async def _run(self, token: CancellationToken):
        try:
            result = await self._fetcher(token.request, token)
        except asyncio.CancelledError:
            self.logger.debug("Shipping calculation cancelled", postcode=token.request.postcode)
            if not token.cancelled:
                # Cancelled from outside the calculator, e.g. loop shutdown.
                raise
            return
        except CalculationCancelledError:
            self.logger.debug("Shipping calculation cancelled", postcode=token.request.postcode)
            return
        except ShippingCalculationError as exc:
            self._settle(token, result=None, error=exc.server_message or FALLBACK_ERROR_MESSAGE)
            return
        except Exception as exc:
            if token is self._token and not token.cancelled:
                self.logger.error("Error calculating shipping", postcode=token.request.postcode, error=str(exc))
            self._settle(token, result=None, error=GENERIC_ERROR_MESSAGE)
            return

        self._settle(token, result=result, error=None)

    def _settle(self, token: CancellationToken, result: Optional[CalculationResult], error: Optional[str]):
        if token is not self._token or token.cancelled:
            self.logger.debug("Discarding superseded shipping response", postcode=token.request.postcode)
            return
        self._task = None
        self._set_state(ShippingState(phase=CalculatorPhase.SETTLED, result=result, is_loading=False, error=error))

    def _cancel_pending(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_in_flight(self):
        if self._token is not None:
            self._token.cancel()
            self._token = None
        if self._task is not None:
            if not self._task.done():
                self._task.cancel()
            self._task = None
        if self._state.is_loading:
            self._set_state(replace(self._state, is_loading=False))

    def _set_state(self, state: ShippingState):
        # Results compare without details, so a new result object always notifies.
        if state == self._state and state.result is self._state.result:
            return
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as exc:
                self.logger.error("Shipping state listener failed", error=str(exc))
