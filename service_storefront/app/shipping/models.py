"""
Shipping data model shared by the calculator, its client and the endpoint.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field


@dataclass(frozen=True)
class CartItem:
    """A cart line as far as shipping is concerned."""

    id: int
    quantity: int = 1
    is_virtual: bool = False
    is_downloadable: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "virtual": self.is_virtual,
            "downloadable": self.is_downloadable,
            "quantity": self.quantity,
        }


@dataclass(frozen=True)
class CalculationRequest:
    """Inputs of one shipping calculation."""

    postcode: str
    cart_items: Tuple[CartItem, ...]
    subtotal: float

    @classmethod
    def build(cls, postcode: Optional[str], cart_items: Optional[Sequence[CartItem]], subtotal: float) -> "CalculationRequest":
        return cls(postcode=(postcode or "").strip(), cart_items=tuple(cart_items or ()), subtotal=float(subtotal or 0))

    @property
    def is_complete(self) -> bool:
        """Only complete requests are ever sent downstream."""
        return bool(self.postcode) and len(self.cart_items) > 0

    def to_payload(self) -> Dict[str, Any]:
        return {
            "postcode": self.postcode,
            "items": [item.to_payload() for item in self.cart_items],
            "subtotal": self.subtotal,
        }


@dataclass(frozen=True)
class CalculationResult:
    cost: float
    name: Optional[str] = None
    delivery_time: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def is_free_shipping(self) -> bool:
        return self.cost == 0

    @classmethod
    def from_payload(cls, shipping: Dict[str, Any]) -> "CalculationResult":
        """Parse the ``shipping`` object of an endpoint response.

        Raises ``ValueError``/``KeyError``/``TypeError`` on malformed payloads.
        """
        if not isinstance(shipping, dict):
            raise TypeError("shipping must be an object")
        cost = shipping["cost"]
        if isinstance(cost, bool):
            raise TypeError("shipping cost must be a number")
        return cls(
            cost=float(cost),
            name=shipping.get("name"),
            delivery_time=shipping.get("deliveryTime", shipping.get("delivery_time")),
            details=dict(shipping),
        )


# HTTP schema of the shipping endpoint

class ShippingItemPayload(BaseModel):
    id: int
    virtual: bool = False
    downloadable: bool = False
    quantity: int = 1


class ShippingCalculatePayload(BaseModel):
    postcode: Optional[str] = None
    items: List[ShippingItemPayload] = Field(default_factory=list)
    subtotal: float = 0.0


class ShippingQuote(BaseModel):
    cost: float
    name: str
    deliveryTime: str
    postcode: str
    zoneId: Optional[int] = None
    zoneName: Optional[str] = None
    methodId: Optional[str] = None
    freeShippingApplied: bool = False
    originalCost: Optional[float] = None
    reason: Optional[str] = None
