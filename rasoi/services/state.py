"""
Order status machine.

    ACTIVE ──► COMPLETED
       └─────► CANCELLED

Both targets are terminal. Kitchen progress (preparing/ready/served) is
tracked per item and stamped on the order by the order store; it is not
an order status.
"""
import logging

from sqlalchemy.orm import Session

from rasoi.context import ActorContext
from rasoi.db import transaction
from rasoi.errors import ValidationFailed
from rasoi.models.common import utcnow
from rasoi.models.core import ItemStatus, Order, OrderStatus
from rasoi.services.customers import record_completion_quietly
from rasoi.services.orders import ensure_active, load_items, load_order
from rasoi.services.tables import sync_table
from rasoi.util.audit import audit

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.ACTIVE: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def apply_transition(order: Order, target: OrderStatus, reason: str | None = None) -> None:
    """Validate and apply one transition in memory, stamping its timestamp."""
    ensure_active(order)
    if not can_transition(order.status, target):
        raise ValidationFailed(f"Cannot move an order from {order.status.value} to {target.value}")

    now = utcnow()
    if target == OrderStatus.CANCELLED:
        if not reason or not reason.strip():
            raise ValidationFailed("A reason is required to cancel an order")
        order.cancel_reason = reason.strip()
        order.cancelled_at = now
    elif target == OrderStatus.COMPLETED:
        order.completed_at = now
    order.status = target


def update_status(db: Session, ctx: ActorContext, order_id: str, status: str, cancel_reason: str | None = None) -> Order:
    target = OrderStatus(status)
    with transaction(db):
        order = load_order(db, ctx, order_id, lock=True)
        ensure_active(order)
        if target == OrderStatus.COMPLETED:
            unserved = [i.name_snapshot for i in load_items(db, order.id) if i.status != ItemStatus.SERVED]
            if unserved:
                raise ValidationFailed(f"Order cannot be completed. Items not served yet: {', '.join(unserved)}")

        apply_transition(order, target, cancel_reason)
        if target == OrderStatus.CANCELLED:
            audit(db, ctx, "Order", order.id, "CANCEL",
                  before={"status": OrderStatus.ACTIVE.value}, after={"status": target.value},
                  reason=order.cancel_reason)
        sync_table(db, order.table_id)

    logger.info("order %s -> %s", order.order_number, target.value)
    if target == OrderStatus.COMPLETED:
        record_completion_quietly(db, ctx, order)
    return order


def accept_order(db: Session, ctx: ActorContext, order_id: str) -> Order:
    """Staff confirm a customer-placed (QR/web/platform) order."""
    with transaction(db):
        order = load_order(db, ctx, order_id, lock=True)
        ensure_active(order)
        if order.confirmed_at is not None:
            raise ValidationFailed("Order is already accepted")
        order.confirmed_at = utcnow()
    return order


def reject_order(db: Session, ctx: ActorContext, order_id: str, reason: str) -> Order:
    with transaction(db):
        order = load_order(db, ctx, order_id, lock=True)
        ensure_active(order)
        if order.confirmed_at is not None:
            raise ValidationFailed("Only orders awaiting acceptance can be rejected")
        apply_transition(order, OrderStatus.CANCELLED, reason)
        audit(db, ctx, "Order", order.id, "REJECT", reason=order.cancel_reason)
        sync_table(db, order.table_id)
    logger.info("order %s rejected: %s", order.order_number, order.cancel_reason)
    return order
