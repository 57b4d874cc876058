import logging
from decimal import Decimal

from sqlalchemy.orm import Session

from rasoi.context import ActorContext
from rasoi.db import transaction
from rasoi.errors import ValidationFailed
from rasoi.models.common import utcnow
from rasoi.models.core import Order, OrderStatus, PaymentMethod, PaymentStatus
from rasoi.schemas.orders import PaymentIn
from rasoi.services.credit import sync_credit_quietly
from rasoi.services.customers import record_completion_quietly
from rasoi.services.orders import load_items, load_order
from rasoi.services.pricing import _money, order_total, subtotal
from rasoi.services.state import apply_transition
from rasoi.services.tables import sync_table

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def credit_delta(prev_method: PaymentMethod | None, prev_status: PaymentStatus,
                 new_method: PaymentMethod | None, new_status: PaymentStatus,
                 prev_total, new_total) -> Decimal:
    """
    How much a payment change moves the customer's credit balance.

    Going onto credit adds what is now owed; leaving unpaid credit (paid, or
    switched to another still-unpaid method) removes what had been added.
    """
    was_owed = prev_method == PaymentMethod.CREDIT and prev_status == PaymentStatus.PENDING
    now_owed = new_method == PaymentMethod.CREDIT and new_status == PaymentStatus.PENDING

    if prev_method != PaymentMethod.CREDIT and now_owed:
        return _money(new_total)
    if was_owed and new_status == PaymentStatus.PAID:
        return -_money(prev_total)
    if was_owed and new_method != PaymentMethod.CREDIT:
        return -_money(prev_total)
    return ZERO


def update_payment(db: Session, ctx: ActorContext, order_id: str, body: PaymentIn) -> Order:
    """
    Record how an order is (or will be) paid.

    A PAID status or a CREDIT method completes an active order. A completed
    order only accepts settling its still-pending payment; paid or cancelled
    orders are frozen.
    """
    new_method = PaymentMethod(body.payment_method)
    new_status = PaymentStatus(body.payment_status)

    with transaction(db):
        order = load_order(db, ctx, order_id, lock=True)
        if order.status == OrderStatus.CANCELLED:
            raise ValidationFailed("Cannot modify a cancelled order")
        if order.status == OrderStatus.COMPLETED:
            if order.payment_status == PaymentStatus.PAID:
                raise ValidationFailed("Cannot modify a completed order")
            if body.discount_amount is not None:
                raise ValidationFailed("Cannot change the discount of a completed order")
        if new_method == PaymentMethod.CREDIT and not order.customer_id:
            raise ValidationFailed("Credit sales need a customer on the order")

        prev_method, prev_status, prev_total = order.payment_method, order.payment_status, _money(order.total_amount)

        if body.discount_amount is not None:
            items = load_items(db, order.id)
            sub = subtotal(items)
            discount = _money(body.discount_amount)
            if discount > sub:
                raise ValidationFailed(f"Discount {discount} exceeds order subtotal {sub}")
            order.discount_amount = discount
            order.total_amount = order_total(items, discount)

        order.payment_method = new_method
        order.payment_status = new_status
        if body.payment_provider is not None:
            order.payment_provider = body.payment_provider
        if body.payment_reference is not None:
            order.payment_reference = body.payment_reference
        if body.payment_amount is not None:
            order.payment_amount = _money(body.payment_amount)
        order.paid_at = (body.paid_at or utcnow()) if new_status == PaymentStatus.PAID else None

        completed_now = False
        if order.status == OrderStatus.ACTIVE and (new_status == PaymentStatus.PAID or new_method == PaymentMethod.CREDIT):
            apply_transition(order, OrderStatus.COMPLETED)
            completed_now = True
        sync_table(db, order.table_id)

    logger.info("order %s payment %s/%s total=%s", order.order_number, new_method.value, new_status.value, order.total_amount)

    delta = credit_delta(prev_method, prev_status, new_method, new_status, prev_total, order.total_amount)
    if order.customer_id and (delta or PaymentMethod.CREDIT in (prev_method, new_method)):
        sync_credit_quietly(db, ctx, order.customer_id, expected_delta=delta)
    if completed_now:
        record_completion_quietly(db, ctx, order)
    return order
