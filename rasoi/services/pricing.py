from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from sqlalchemy.orm import Session

from rasoi.context import ActorContext
from rasoi.errors import ValidationFailed
from rasoi.models.core import Product
from rasoi.schemas.orders import OrderItemIn

CENT = Decimal("0.01")


def _money(x) -> Decimal:
    # str() first so float inputs don't carry binary artifacts
    return Decimal(str(x or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


def as_float(x) -> float:
    return float(_money(x))


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    name_snapshot: str
    price_snapshot: Decimal
    cost_snapshot: Decimal
    quantity: int
    notes: str | None = None


def discounted_unit_price(price, discount_percent) -> Decimal:
    return _money(Decimal(str(price)) * (1 - Decimal(str(discount_percent or 0)) / 100))


def find_products(db: Session, ctx: ActorContext, ids: Iterable[str]) -> dict[str, Product]:
    wanted = set(ids)
    if not wanted:
        return {}
    rows = (
        db.query(Product)
        .filter(
            Product.tenant_id == ctx.tenant_id,
            Product.restaurant_id == ctx.restaurant_id,
            Product.id.in_(wanted),
            Product.deleted_at.is_(None),
            Product.is_available.is_(True),
        )
        .all()
    )
    return {p.id: p for p in rows}


def price_items(db: Session, ctx: ActorContext, items: Sequence[OrderItemIn]) -> list[PricedLine]:
    """
    Freeze current catalog prices onto the requested lines.

    Products are looked up inside the actor's restaurant only; anything
    missing, soft-deleted or unavailable fails the whole request, naming
    the offending ids.
    """
    requested = [i.product_id for i in items]
    products = find_products(db, ctx, requested)
    missing = sorted({pid for pid in requested if pid not in products})
    if missing:
        raise ValidationFailed(f"Products not found or unavailable: {', '.join(missing)}")

    lines = []
    for i in items:
        p = products[i.product_id]
        lines.append(PricedLine(
            product_id=p.id,
            name_snapshot=p.name,
            price_snapshot=discounted_unit_price(p.price, p.discount_percent),
            cost_snapshot=_money(p.cost),
            quantity=i.quantity,
            notes=i.notes,
        ))
    return lines


def subtotal(lines) -> Decimal:
    """Σ price_snapshot × quantity over priced lines or persisted order items."""
    return _money(sum((Decimal(str(l.price_snapshot)) * l.quantity for l in lines), Decimal("0")))


def order_total(lines, discount=None) -> Decimal:
    return _money(subtotal(lines) - _money(discount))
