"""
Unit tests for the debounced shipping calculator.
"""

import asyncio
from dataclasses import replace
from typing import List

import pytest

from shared.errors import ShippingCalculationError, UpstreamError
from service_storefront.app.shipping.calculator import (
    CalculatorPhase,
    CancellationToken,
    FALLBACK_ERROR_MESSAGE,
    GENERIC_ERROR_MESSAGE,
    ShippingCalculator,
    ShippingState,
)
from service_storefront.app.shipping.models import CalculationRequest, CalculationResult, CartItem


DEBOUNCE = 0.05
SETTLE = 0.2

CART = [CartItem(id=1, quantity=2)]
OTHER_CART = [CartItem(id=1, quantity=2), CartItem(id=2, quantity=1)]


class RecordingFetcher:
    """Downstream stub returning a fixed cost and recording every call."""

    def __init__(self, cost: float = 20.0, delay: float = 0.0):
        self.cost = cost
        self.delay = delay
        self.calls: List[CalculationRequest] = []

    async def __call__(self, request: CalculationRequest, token: CancellationToken) -> CalculationResult:
        self.calls.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        return CalculationResult(cost=self.cost, name="Flat rate")


class TestShippingState:
    """Derived fields of the state snapshot."""

    def test_no_result(self):
        state = ShippingState()
        assert state.cost == 0
        assert state.is_free_shipping is False
        assert state.phase is CalculatorPhase.IDLE

    def test_free_shipping_iff_cost_is_zero(self):
        assert ShippingState(result=CalculationResult(cost=0)).is_free_shipping is True
        assert ShippingState(result=CalculationResult(cost=0.01)).is_free_shipping is False
        assert ShippingState(result=CalculationResult(cost=15)).cost == 15


class TestShippingCalculator:
    """Test cases for ShippingCalculator."""

    @pytest.mark.asyncio
    async def test_bursty_postcode_changes_issue_one_call(self):
        fetcher = RecordingFetcher(cost=20)
        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)

        calculator.update("1", CART, 100)
        calculator.update("11", CART, 100)
        calculator.update("1145", CART, 100)
        assert fetcher.calls == []
        assert calculator.phase is CalculatorPhase.PENDING

        await asyncio.sleep(SETTLE)

        assert [call.postcode for call in fetcher.calls] == ["1145"]
        assert calculator.state.cost == 20
        assert calculator.state.is_loading is False
        assert calculator.phase is CalculatorPhase.SETTLED
        await calculator.close()

    @pytest.mark.asyncio
    async def test_default_debounce_is_half_a_second(self):
        fetcher = RecordingFetcher()
        calculator = ShippingCalculator(fetcher)

        calculator.update("1145", CART, 100)
        await asyncio.sleep(0.3)
        assert fetcher.calls == []

        await asyncio.sleep(0.4)
        assert len(fetcher.calls) == 1
        await calculator.close()

    @pytest.mark.asyncio
    async def test_request_carries_cart_and_subtotal(self):
        fetcher = RecordingFetcher()
        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)

        calculator.update(" 51000 ", OTHER_CART, 250)
        await asyncio.sleep(SETTLE)

        request = fetcher.calls[0]
        assert request.postcode == "51000"
        assert request.cart_items == tuple(OTHER_CART)
        assert request.subtotal == 250.0
        assert request.to_payload()["items"][1] == {
            "id": 2, "virtual": False, "downloadable": False, "quantity": 1,
        }
        await calculator.close()

    @pytest.mark.asyncio
    async def test_empty_input_resets_synchronously(self):
        fetcher = RecordingFetcher(cost=20)
        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        calculator.update("1145", CART, 100)
        await asyncio.sleep(SETTLE)
        assert calculator.state.result is not None

        calculator.update("", CART, 100)

        state = calculator.state
        assert state.result is None
        assert state.error is None
        assert state.is_loading is False
        assert state.phase is CalculatorPhase.IDLE

        calculator.update("1145", [], 100)
        assert calculator.state.result is None
        await calculator.close()

    @pytest.mark.asyncio
    async def test_clearing_input_cancels_pending_call(self):
        fetcher = RecordingFetcher()
        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)

        calculator.update("1145", CART, 100)
        calculator.update(None, CART, 100)
        await asyncio.sleep(SETTLE)

        assert fetcher.calls == []
        assert calculator.phase is CalculatorPhase.IDLE
        await calculator.close()

    @pytest.mark.asyncio
    async def test_identical_input_does_not_reissue(self):
        fetcher = RecordingFetcher()
        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)

        calculator.update("1145", CART, 100)
        await asyncio.sleep(SETTLE)
        calculator.update("1145", list(CART), 100)
        await asyncio.sleep(SETTLE)

        assert len(fetcher.calls) == 1
        await calculator.close()

    @pytest.mark.asyncio
    async def test_loading_flag_while_in_flight(self):
        fetcher = RecordingFetcher(delay=0.2)
        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)

        calculator.update("1145", CART, 100)
        await asyncio.sleep(0.1)

        assert calculator.state.is_loading is True
        assert calculator.phase is CalculatorPhase.IN_FLIGHT
        assert calculator.in_flight is True

        await asyncio.sleep(0.25)
        assert calculator.state.is_loading is False
        await calculator.close()

    @pytest.mark.asyncio
    async def test_teardown_cancels_in_flight_call(self):
        started = asyncio.Event()
        observed = []

        async def fetcher(request, token):
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                observed.append(token.cancelled)
                raise
            return CalculationResult(cost=99)

        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        calculator.update("1145", CART, 100)
        await asyncio.wait_for(started.wait(), timeout=1)

        await calculator.close()

        assert observed == [True]
        assert calculator.state.result is None
        assert calculator.state.error is None
        assert calculator.state.is_loading is False
        assert calculator.in_flight is False

    @pytest.mark.asyncio
    async def test_updates_after_close_are_ignored(self):
        fetcher = RecordingFetcher()
        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        await calculator.close()

        calculator.update("1145", CART, 100)
        calculator.retry()
        await asyncio.sleep(SETTLE)

        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_context_manager_closes(self):
        fetcher = RecordingFetcher()
        async with ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE) as calculator:
            calculator.update("1145", CART, 100)

        await asyncio.sleep(SETTLE)
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_last_issued_wins_over_last_resolved(self):
        """A resolves after B, but only B (the newest request) may set state."""

        async def fetcher(request, token):
            if len(request.cart_items) == 1:
                # Request A ignores cancellation and answers late.
                try:
                    await asyncio.sleep(0.15)
                except asyncio.CancelledError:
                    await asyncio.sleep(0.15)
                return CalculationResult(cost=20)
            return CalculationResult(cost=0)

        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        calculator.update("1145", CART, 100)
        await asyncio.sleep(0.08)
        assert calculator.in_flight is True

        calculator.update("1145", OTHER_CART, 100)
        await asyncio.sleep(0.4)

        assert calculator.state.cost == 0
        assert calculator.state.is_free_shipping is True
        await calculator.close()

    @pytest.mark.asyncio
    async def test_at_most_one_call_in_flight(self):
        active = 0
        max_active = 0

        async def fetcher(request, token):
            nonlocal active, max_active
            active += 1
            max_active = max(max_active, active)
            try:
                await asyncio.sleep(0.1)
            finally:
                active -= 1
            return CalculationResult(cost=10)

        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        for postcode in ["1000", "2000", "3000", "4000"]:
            calculator.update(postcode, CART, 100)
            await asyncio.sleep(0.07)
        await asyncio.sleep(SETTLE)

        assert max_active == 1
        assert calculator.state.cost == 10
        await calculator.close()

    @pytest.mark.asyncio
    async def test_business_error_uses_server_message(self):
        async def fetcher(request, token):
            raise ShippingCalculationError("We do not ship to this postcode")

        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        calculator.update("9999", CART, 100)
        await asyncio.sleep(SETTLE)

        assert calculator.state.error == "We do not ship to this postcode"
        assert calculator.state.result is None
        await calculator.close()

    @pytest.mark.asyncio
    async def test_business_error_without_message_uses_fallback(self):
        async def fetcher(request, token):
            raise ShippingCalculationError()

        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        calculator.update("9999", CART, 100)
        await asyncio.sleep(SETTLE)

        assert calculator.state.error == FALLBACK_ERROR_MESSAGE
        await calculator.close()

    @pytest.mark.asyncio
    async def test_transport_error_clears_previous_result(self):
        fail = False

        async def fetcher(request, token):
            if fail:
                raise UpstreamError("shipping", "HTTP error! status: 500", status_code=500)
            return CalculationResult(cost=25)

        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        calculator.update("1145", CART, 100)
        await asyncio.sleep(SETTLE)
        assert calculator.state.cost == 25

        fail = True
        calculator.update("1146", CART, 100)
        await asyncio.sleep(SETTLE)

        assert calculator.state.result is None
        assert calculator.state.cost == 0
        assert calculator.state.error == GENERIC_ERROR_MESSAGE
        await calculator.close()

    @pytest.mark.asyncio
    async def test_token_cancellation_is_silent(self):
        async def fetcher(request, token):
            token.cancel()
            token.raise_if_cancelled()

        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        calculator.update("1145", CART, 100)
        await asyncio.sleep(SETTLE)

        assert calculator.state.error is None
        assert calculator.state.result is None
        await calculator.close()

    @pytest.mark.asyncio
    async def test_retry_bypasses_debounce(self):
        attempts = []

        async def fetcher(request, token):
            attempts.append(request.postcode)
            if len(attempts) == 1:
                raise UpstreamError("shipping", "unreachable")
            return CalculationResult(cost=30)

        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        calculator.update("1145", CART, 100)
        await asyncio.sleep(SETTLE)
        assert calculator.state.error == GENERIC_ERROR_MESSAGE

        calculator.debounce_seconds = 10
        calculator.retry()
        assert calculator.state.is_loading is True
        assert calculator.state.error is None
        await asyncio.sleep(0.05)

        assert attempts == ["1145", "1145"]
        assert calculator.state.cost == 30
        assert calculator.state.error is None
        await calculator.close()

    @pytest.mark.asyncio
    async def test_retry_without_request_is_noop(self):
        fetcher = RecordingFetcher()
        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)

        calculator.retry()
        await asyncio.sleep(0.05)

        assert fetcher.calls == []
        await calculator.close()

    @pytest.mark.asyncio
    async def test_listeners_receive_state_transitions(self):
        fetcher = RecordingFetcher(cost=0)
        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        phases = []
        unsubscribe = calculator.subscribe(lambda state: phases.append(state.phase))

        calculator.update("1145", CART, 100)
        await asyncio.sleep(SETTLE)

        assert phases == [CalculatorPhase.PENDING, CalculatorPhase.IN_FLIGHT, CalculatorPhase.SETTLED]

        unsubscribe()
        calculator.update("", CART, 100)
        assert len(phases) == 3
        await calculator.close()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_calculator(self):
        fetcher = RecordingFetcher(cost=5)
        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)

        def broken(state):
            raise RuntimeError("render failed")

        calculator.subscribe(broken)
        calculator.update("1145", CART, 100)
        await asyncio.sleep(SETTLE)

        assert calculator.state.cost == 5
        await calculator.close()

    @pytest.mark.asyncio
    async def test_result_with_new_details_notifies_listeners(self):
        zones = iter(["Zagreb", "Split"])

        async def fetcher(request, token):
            return CalculationResult(cost=25, name="Courier", details={"zone": next(zones)})

        calculator = ShippingCalculator(fetcher, debounce_seconds=DEBOUNCE)
        seen = []
        calculator.subscribe(lambda state: seen.append(state))

        calculator.update("10500", CART, 100)
        await asyncio.sleep(SETTLE)
        calculator.retry()
        await asyncio.sleep(0.05)

        settled = [state for state in seen if state.phase is CalculatorPhase.SETTLED]
        assert [state.result.details["zone"] for state in settled] == ["Zagreb", "Split"]

        # Equal cost and name, different details: still a new state.
        count = len(seen)
        calculator._set_state(replace(calculator.state, result=CalculationResult(cost=25, name="Courier", details={"zone": "Rijeka"})))
        assert len(seen) == count + 1
        assert calculator.state.result.details == {"zone": "Rijeka"}

        calculator._set_state(calculator.state)
        assert len(seen) == count + 1
        await calculator.close()
