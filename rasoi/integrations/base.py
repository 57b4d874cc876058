from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from rasoi.models.core import Platform


class PayloadError(ValueError):
    """A platform payload is missing something we cannot do without."""


@dataclass
class NormalizedItem:
    external_item_id: str
    name: str
    quantity: int
    notes: str | None = None


@dataclass
class NormalizedOrder:
    external_order_id: str
    customer_name: str | None
    customer_phone: str | None
    items: list[NormalizedItem] = field(default_factory=list)
    notes: str | None = None
    table_number: str | None = None


def first(d: dict | None, *keys: str) -> Any:
    """First truthy value among alternative field names."""
    if not isinstance(d, dict):
        return None
    for k in keys:
        v = d.get(k)
        if v not in (None, ""):
            return v
    return None


def as_quantity(v) -> int:
    try:
        q = int(v)
    except (TypeError, ValueError):
        return 1
    return q if q > 0 else 1


class PlatformAdapter(ABC):
    """
    Translates one delivery platform's webhook payload into a NormalizedOrder.

    Platforms rename fields freely between API versions and regions, so
    adapters accept every known alias and fill gaps with defaults rather
    than rejecting an order.
    """

    platform: Platform

    @abstractmethod
    def get_external_restaurant_id(self, payload: dict) -> str: ...

    @abstractmethod
    def get_external_order_id(self, payload: dict) -> str: ...

    @abstractmethod
    def is_valid_payload(self, payload: Any) -> bool: ...

    @abstractmethod
    def normalize(self, payload: dict) -> NormalizedOrder: ...

    @property
    def guest_name(self) -> str:
        """Shown on the order when the payload carries no customer name."""
        return f"{self.platform.value.title()} Customer"

    @property
    def signature_headers(self) -> tuple[str, ...]:
        return (f"x-{self.platform.value.lower()}-signature", "x-webhook-signature", "x-signature")
