"""
Shipping package: the debounced cost calculator used by cart views and the
zone-based quote service behind ``/api/shipping/calculate``.
"""

from .models import CartItem, CalculationRequest, CalculationResult, ShippingQuote
from .calculator import ShippingCalculator, ShippingState, CalculatorPhase, CancellationToken
from .rates import ShippingRateService, matches_postcode

__all__ = [
    "CartItem",
    "CalculationRequest",
    "CalculationResult",
    "ShippingQuote",
    "ShippingCalculator",
    "ShippingState",
    "CalculatorPhase",
    "CancellationToken",
    "ShippingRateService",
    "matches_postcode",
]
