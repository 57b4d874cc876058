from typing import Any

from rasoi.integrations.base import (
    NormalizedItem, NormalizedOrder, PayloadError, PlatformAdapter, as_quantity, first,
)
from rasoi.models.core import Platform


class SwiggyAdapter(PlatformAdapter):
    platform = Platform.SWIGGY

    def get_external_restaurant_id(self, payload: dict) -> str:
        rid = first(payload, "outletId", "outlet_id", "restaurant_id")
        if not rid:
            raise PayloadError("Missing outletId in Swiggy payload")
        return str(rid)

    def get_external_order_id(self, payload: dict) -> str:
        oid = first(payload, "orderId", "order_id")
        if not oid:
            raise PayloadError("Missing orderId in Swiggy payload")
        return str(oid)

    def is_valid_payload(self, payload: Any) -> bool:
        if not isinstance(payload, dict) or not first(payload, "orderId", "order_id"):
            return False
        items = first(payload, "orderItems", "items")
        return isinstance(items, list) and len(items) > 0

    def normalize(self, payload: dict) -> NormalizedOrder:
        customer = first(payload, "customerDetails", "customer") or {}
        items = [
            NormalizedItem(
                external_item_id=str(first(i, "itemId", "item_id") or "unknown"),
                name=first(i, "itemName", "item_name") or "Unknown Item",
                quantity=as_quantity(first(i, "qty", "quantity")),
                notes=first(i, "specialInstructions", "notes"),
            )
            for i in first(payload, "orderItems", "items") or []
            if isinstance(i, dict)
        ]
        return NormalizedOrder(
            external_order_id=self.get_external_order_id(payload),
            customer_name=first(customer, "name"),
            customer_phone=first(customer, "mobile", "phone"),
            items=items,
            notes=first(payload, "specialInstructions", "notes"),
            table_number=first(payload, "tableNumber", "table_number"),
        )
