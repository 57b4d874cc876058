import json
import logging
import secrets
import string
from datetime import date, datetime

from sqlalchemy.orm import Session

from rasoi.config import settings
from rasoi.context import ActorContext
from rasoi.db import transaction
from rasoi.errors import InternalError, NotFound, ValidationFailed
from rasoi.models.common import utcnow
from rasoi.models.core import (
    Order, OrderItem, OrderStatus, OrderType, OrderSource, ItemStatus, PaymentStatus, TableStatus,
)
from rasoi.schemas.orders import OrderItemIn, OrderItemUpdateIn
from rasoi.services.credit import rederive_balance
from rasoi.services.customers import get_customer, upsert_customer
from rasoi.services.pricing import _money, as_float, order_total, price_items, subtotal
from rasoi.services.tables import find_table_by_number, get_table, sync_table
from rasoi.util.audit import audit

logger = logging.getLogger(__name__)

ORDER_NUMBER_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"  # no 0/O, 1/I
TERMINAL_STATUSES = (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


# ── Serialization ───────────────────────────────────────────────────────────
def item_row(i: OrderItem) -> dict:
    return {
        "id": i.id,
        "product_id": i.product_id,
        "name_snapshot": i.name_snapshot,
        "price_snapshot": as_float(i.price_snapshot),
        "cost_snapshot": as_float(i.cost_snapshot),
        "quantity": i.quantity,
        "notes": i.notes,
        "status": i.status.value,
    }


def order_row(o: Order, items: list[OrderItem]) -> dict:
    return {
        "id": o.id,
        "order_number": o.order_number,
        "order_type": o.order_type.value,
        "status": o.status.value,
        "source": o.source.value,
        "table_id": o.table_id,
        "hall_id": o.hall_id,
        "table_number": o.table_number,
        "customer_id": o.customer_id,
        "customer_name": o.customer_name,
        "customer_phone": o.customer_phone,
        "assigned_staff_id": o.assigned_staff_id,
        "notes": o.notes,
        "subtotal": as_float(subtotal(items)),
        "discount_amount": as_float(o.discount_amount) if o.discount_amount is not None else None,
        "total_amount": as_float(o.total_amount),
        "payment_method": o.payment_method.value if o.payment_method else None,
        "payment_status": o.payment_status.value,
        "payment_provider": o.payment_provider,
        "payment_reference": o.payment_reference,
        "payment_amount": as_float(o.payment_amount) if o.payment_amount is not None else None,
        "paid_at": o.paid_at,
        "external_order_id": o.external_order_id,
        "cancel_reason": o.cancel_reason,
        "placed_at": o.placed_at,
        "confirmed_at": o.confirmed_at,
        "preparing_at": o.preparing_at,
        "ready_at": o.ready_at,
        "completed_at": o.completed_at,
        "cancelled_at": o.cancelled_at,
        "items": [item_row(i) for i in items],
    }


# ── Lookups ─────────────────────────────────────────────────────────────────
def load_order(db: Session, ctx: ActorContext, order_id: str, lock: bool = False) -> Order:
    q = db.query(Order).filter(
        Order.id == order_id,
        Order.tenant_id == ctx.tenant_id,
        Order.restaurant_id == ctx.restaurant_id,
    )
    if lock:
        q = q.with_for_update()
    o = q.first()
    if not o:
        raise NotFound("Order not found")
    return o


def load_items(db: Session, order_id: str) -> list[OrderItem]:
    return (
        db.query(OrderItem)
        .filter(OrderItem.order_id == order_id)
        .order_by(OrderItem.created_at.asc(), OrderItem.id.asc())
        .all()
    )


def find_by_external_id(db: Session, restaurant_id: str, source: OrderSource, external_order_id: str) -> Order | None:
    return (
        db.query(Order)
        .filter(
            Order.restaurant_id == restaurant_id,
            Order.source == source,
            Order.external_order_id == str(external_order_id),
        )
        .first()
    )


def ensure_active(order: Order) -> None:
    """Completed and cancelled orders are frozen."""
    if order.status in TERMINAL_STATUSES:
        raise ValidationFailed(f"Cannot modify a {order.status.value.lower()} order")


def recompute_total(db: Session, order: Order, items: list[OrderItem] | None = None) -> None:
    """total = Σ price_snapshot × quantity − discount, always from the full current item set."""
    if items is None:
        db.flush()
        items = load_items(db, order.id)
    sub = subtotal(items)
    if order.discount_amount is not None and _money(order.discount_amount) > sub:
        # removing lines can leave a discount larger than what remains
        order.discount_amount = sub
    order.total_amount = order_total(items, order.discount_amount)


def _stamp_kitchen_progress(order: Order, items: list[OrderItem]) -> None:
    now = utcnow()
    if order.preparing_at is None and any(i.status == ItemStatus.PREPARING for i in items):
        order.preparing_at = now
    all_ready = bool(items) and all(i.status in (ItemStatus.READY, ItemStatus.SERVED) for i in items)
    if all_ready and order.ready_at is None:
        order.ready_at = now
    elif not all_ready:
        order.ready_at = None


# ── Order numbers ───────────────────────────────────────────────────────────
def random_order_number() -> str:
    """#ORD-XY77: two random characters and one digit repeated, easy to call out across a room."""
    head = "".join(secrets.choice(ORDER_NUMBER_ALPHABET) for _ in range(2))
    digit = secrets.choice(string.digits)
    return f"#ORD-{head}{digit}{digit}"


def generate_order_number(db: Session, restaurant_id: str, business_date: date, attempts: int | None = None) -> str:
    """Numbers only have to be free within the restaurant's business day."""
    attempts = attempts or settings.ORDER_NUMBER_MAX_ATTEMPTS
    for _ in range(attempts):
        candidate = random_order_number()
        taken = (
            db.query(Order.id)
            .filter(
                Order.restaurant_id == restaurant_id,
                Order.business_date == business_date,
                Order.order_number == candidate,
            )
            .first()
        )
        if not taken:
            return candidate
    logger.error("order number space exhausted for restaurant %s on %s after %d attempts",
                 restaurant_id, business_date, attempts)
    raise InternalError("Could not allocate an order number, please retry")


# ── Creation ────────────────────────────────────────────────────────────────
def create_order(
    db: Session,
    ctx: ActorContext,
    items: list[OrderItemIn],
    *,
    order_type: str | OrderType | None = None,
    source: str | OrderSource = OrderSource.MANUAL,
    table_id: str | None = None,
    table_number: str | None = None,
    customer_id: str | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
    assigned_staff_id: str | None = None,
    notes: str | None = None,
    external_order_id: str | None = None,
    external_metadata: dict | None = None,
    confirmed: bool = True,
    overwrite_customer_name: bool = True,
    fallback_customer_name: str | None = None,
) -> Order:
    """
    Place an order: price every line from the catalog, allocate an order
    number and persist order + items. A dine-in order on a table marks the
    table OCCUPIED in the same transaction.

    Unauthenticated and platform callers pass overwrite_customer_name=False
    so a phone number alone cannot rename a stored customer.
    `fallback_customer_name` only ever lands on the order snapshot.
    """
    if not items:
        raise ValidationFailed("An order needs at least one item")
    source = OrderSource(source)

    with transaction(db):
        table = None
        if table_id:
            table = get_table(db, ctx, table_id)
        elif table_number:
            table = find_table_by_number(db, ctx, table_number)
            if not table:
                raise NotFound(f"Table {table_number} not found")

        kind = OrderType(order_type) if order_type else (OrderType.DINE_IN if table else OrderType.TAKEAWAY)

        customer = None
        if customer_id:
            customer = get_customer(db, ctx, customer_id)
        elif customer_phone:
            customer = upsert_customer(db, ctx, customer_name, customer_phone, overwrite_name=overwrite_customer_name)

        known_name = customer.name if customer and customer.name != customer.phone else None
        lines = price_items(db, ctx, items)
        now = utcnow()
        order = Order(
            tenant_id=ctx.tenant_id,
            restaurant_id=ctx.restaurant_id,
            order_number=generate_order_number(db, ctx.restaurant_id, now.date()),
            business_date=now.date(),
            order_type=kind,
            status=OrderStatus.ACTIVE,
            table_id=table.id if table else None,
            hall_id=table.hall_id if table else None,
            table_number=table.table_number if table else None,
            customer_id=customer.id if customer else None,
            customer_name=customer_name or known_name or fallback_customer_name,
            customer_phone=customer_phone or (customer.phone if customer else None),
            assigned_staff_id=assigned_staff_id,
            notes=notes,
            total_amount=order_total(lines),
            payment_status=PaymentStatus.PENDING,
            source=source,
            external_order_id=str(external_order_id) if external_order_id else None,
            external_metadata=json.dumps(external_metadata, default=str) if external_metadata is not None else None,
            placed_at=now,
            confirmed_at=now if confirmed else None,
        )
        db.add(order)
        db.flush()

        for l in lines:
            db.add(OrderItem(
                order_id=order.id,
                product_id=l.product_id,
                name_snapshot=l.name_snapshot,
                price_snapshot=l.price_snapshot,
                cost_snapshot=l.cost_snapshot,
                quantity=l.quantity,
                notes=l.notes,
                status=ItemStatus.PENDING,
            ))

        if table and kind == OrderType.DINE_IN:
            table.table_status = TableStatus.OCCUPIED
            sync_table(db, table.id)

    logger.info("order %s placed (%s, %s) total=%s", order.order_number, source.value, kind.value, order.total_amount)
    return order


# ── Item mutations ──────────────────────────────────────────────────────────
def add_items(db: Session, ctx: ActorContext, order_id: str, items: list[OrderItemIn]) -> Order:
    if not items:
        raise ValidationFailed("No items to add")
    with transaction(db, timeout_ms=settings.TX_LONG_TIMEOUT_MS):
        order = load_order(db, ctx, order_id, lock=True)
        ensure_active(order)
        if order.payment_status == PaymentStatus.PAID:
            raise ValidationFailed("Order is already paid")
        for l in price_items(db, ctx, items):
            db.add(OrderItem(
                order_id=order.id,
                product_id=l.product_id,
                name_snapshot=l.name_snapshot,
                price_snapshot=l.price_snapshot,
                cost_snapshot=l.cost_snapshot,
                quantity=l.quantity,
                notes=l.notes,
                status=ItemStatus.REORDER,
            ))
        db.flush()
        current = load_items(db, order.id)
        _stamp_kitchen_progress(order, current)
        recompute_total(db, order, current)
    return order


def update_item(db: Session, ctx: ActorContext, order_id: str, item_id: str, body: OrderItemUpdateIn) -> Order:
    with transaction(db):
        order = load_order(db, ctx, order_id, lock=True)
        ensure_active(order)
        item = (
            db.query(OrderItem)
            .filter(OrderItem.id == item_id, OrderItem.order_id == order.id)
            .with_for_update()
            .first()
        )
        if not item:
            raise NotFound("Order item not found")
        if item.status == ItemStatus.SERVED and body.status and body.status != ItemStatus.SERVED.value:
            raise ValidationFailed("This item is already served and locked")

        if body.quantity is not None:
            item.quantity = body.quantity
        if body.notes is not None:
            item.notes = body.notes
        if body.status:
            item.status = ItemStatus(body.status)
        db.flush()

        current = load_items(db, order.id)
        _stamp_kitchen_progress(order, current)
        recompute_total(db, order, current)
    return order


def remove_item(db: Session, ctx: ActorContext, order_id: str, item_id: str) -> Order:
    with transaction(db):
        order = load_order(db, ctx, order_id, lock=True)
        ensure_active(order)
        item = db.query(OrderItem).filter(OrderItem.id == item_id, OrderItem.order_id == order.id).first()
        if not item:
            raise NotFound("Order item not found")
        db.delete(item)
        db.flush()
        current = load_items(db, order.id)
        _stamp_kitchen_progress(order, current)
        recompute_total(db, order, current)
    return order


def mark_served(db: Session, ctx: ActorContext, order_id: str) -> Order:
    """Everything on the order has reached the table."""
    with transaction(db):
        order = load_order(db, ctx, order_id, lock=True)
        ensure_active(order)
        current = load_items(db, order.id)
        for i in current:
            i.status = ItemStatus.SERVED
        _stamp_kitchen_progress(order, current)
    return order


# ── Deletion ────────────────────────────────────────────────────────────────
def delete_order(db: Session, ctx: ActorContext, order_id: str, reason: str | None = None) -> None:
    """Hard delete. Credit the order still owed disappears from the customer's balance with it."""
    with transaction(db):
        order = load_order(db, ctx, order_id, lock=True)
        items = load_items(db, order.id)
        audit(db, ctx, "Order", order.id, "DELETE", before=order_row(order, items), reason=reason)

        db.query(OrderItem).filter(OrderItem.order_id == order.id).delete(synchronize_session=False)
        db.delete(order)
        db.flush()

        if order.customer_id:
            rederive_balance(db, ctx, order.customer_id)
        sync_table(db, order.table_id)
    logger.info("order %s deleted by %s", order.order_number, ctx.actor_id)


# ── Queries ─────────────────────────────────────────────────────────────────
def get_order(db: Session, ctx: ActorContext, order_id: str) -> dict:
    order = load_order(db, ctx, order_id)
    return order_row(order, load_items(db, order.id))


def list_orders(
    db: Session,
    ctx: ActorContext,
    status: str | None = None,
    source: str | None = None,
    order_type: str | None = None,
    table_id: str | None = None,
    customer_id: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    page: int = 1,
    size: int = 20,
) -> dict:
    q = db.query(Order).filter(Order.tenant_id == ctx.tenant_id, Order.restaurant_id == ctx.restaurant_id)
    try:
        if status:
            q = q.filter(Order.status == OrderStatus(status))
        if source:
            q = q.filter(Order.source == OrderSource(source))
        if order_type:
            q = q.filter(Order.order_type == OrderType(order_type))
    except ValueError as e:
        raise ValidationFailed(str(e))
    if table_id:
        q = q.filter(Order.table_id == table_id)
    if customer_id:
        q = q.filter(Order.customer_id == customer_id)
    if from_date:
        q = q.filter(Order.placed_at >= from_date)
    if to_date:
        q = q.filter(Order.placed_at <= to_date)

    page = max(page, 1)
    size = size if 1 <= size <= 100 else 20
    total = q.count()
    rows = q.order_by(Order.placed_at.desc(), Order.id.desc()).offset((page - 1) * size).limit(size).all()

    by_order: dict[str, list[OrderItem]] = {o.id: [] for o in rows}
    if rows:
        for i in (
            db.query(OrderItem)
            .filter(OrderItem.order_id.in_(list(by_order)))
            .order_by(OrderItem.created_at.asc(), OrderItem.id.asc())
        ):
            by_order[i.order_id].append(i)

    return {
        "items": [order_row(o, by_order[o.id]) for o in rows],
        "total": total,
        "page": page,
        "size": size,
    }
