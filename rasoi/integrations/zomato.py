from typing import Any

from rasoi.integrations.base import (
    NormalizedItem, NormalizedOrder, PayloadError, PlatformAdapter, as_quantity, first,
)
from rasoi.models.core import Platform


class ZomatoAdapter(PlatformAdapter):
    platform = Platform.ZOMATO

    def get_external_restaurant_id(self, payload: dict) -> str:
        rid = first(payload, "restaurant_id", "res_id")
        if not rid:
            raise PayloadError("Missing restaurant_id in Zomato payload")
        return str(rid)

    def get_external_order_id(self, payload: dict) -> str:
        oid = first(payload, "order_id")
        if not oid:
            raise PayloadError("Missing order_id in Zomato payload")
        return str(oid)

    def is_valid_payload(self, payload: Any) -> bool:
        if not isinstance(payload, dict) or not payload.get("order_id"):
            return False
        items = payload.get("items")
        return isinstance(items, list) and len(items) > 0

    def normalize(self, payload: dict) -> NormalizedOrder:
        customer = payload.get("customer") or {}
        items = [
            NormalizedItem(
                external_item_id=str(first(i, "id", "item_id") or "unknown"),
                name=first(i, "name", "item_name") or "Unknown Item",
                quantity=as_quantity(first(i, "quantity", "qty")),
                notes=first(i, "special_instructions"),
            )
            for i in payload.get("items") or []
            if isinstance(i, dict)
        ]
        return NormalizedOrder(
            external_order_id=self.get_external_order_id(payload),
            customer_name=first(customer, "name"),
            customer_phone=first(customer, "phone", "mobile"),
            items=items,
            notes=first(payload, "notes", "special_instructions"),
            table_number=first(payload, "table_no", "table_number"),
        )
