from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rasoi.context import ActorContext, MANAGEMENT_ROLES
from rasoi.db import get_db
from rasoi.deps import require_auth, require_role
from rasoi.models.core import Order
from rasoi.schemas.common import Msg
from rasoi.schemas.orders import (
    AddItemsIn, OrderIn, OrderItemUpdateIn, OrderStatusIn, PaymentIn, RejectIn,
)
from rasoi.services import orders as store
from rasoi.services import payments, state

router = APIRouter(prefix="/orders", tags=["orders"])


def _out(db: Session, order: Order) -> dict:
    return store.order_row(order, store.load_items(db, order.id))


@router.get("/")
def list_orders(
    status: str | None = None,
    source: str | None = None,
    order_type: str | None = None,
    table_id: str | None = None,
    customer_id: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    page: int = 1,
    size: int = 20,
    db: Session = Depends(get_db),
    ctx: ActorContext = Depends(require_auth),
):
    """Paged orders of the caller's restaurant, newest first: { items, total, page, size }."""
    return store.list_orders(
        db, ctx, status=status, source=source, order_type=order_type, table_id=table_id,
        customer_id=customer_id, from_date=from_date, to_date=to_date, page=page, size=size,
    )


@router.post("/", status_code=201)
def create_order(body: OrderIn, db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    order = store.create_order(
        db, ctx, body.items,
        order_type=body.order_type,
        source=body.source,
        table_id=body.table_id,
        table_number=body.table_number,
        customer_id=body.customer_id,
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
        assigned_staff_id=body.assigned_staff_id or ctx.actor_id,
        notes=body.notes,
    )
    return _out(db, order)


@router.get("/{order_id}")
def get_order(order_id: str, db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    return store.get_order(db, ctx, order_id)


@router.delete("/{order_id}", response_model=Msg)
def delete_order(order_id: str, reason: str | None = None, db: Session = Depends(get_db),
                 ctx: ActorContext = Depends(require_role(*MANAGEMENT_ROLES))):
    store.delete_order(db, ctx, order_id, reason=reason)
    return Msg(message="Order deleted")


# ── Items ───────────────────────────────────────────────────────────────────
@router.post("/{order_id}/items")
def add_items(order_id: str, body: AddItemsIn, db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    return _out(db, store.add_items(db, ctx, order_id, body.items))


@router.patch("/{order_id}/items/{item_id}")
def update_item(order_id: str, item_id: str, body: OrderItemUpdateIn, db: Session = Depends(get_db),
                ctx: ActorContext = Depends(require_auth)):
    return _out(db, store.update_item(db, ctx, order_id, item_id, body))


@router.delete("/{order_id}/items/{item_id}")
def remove_item(order_id: str, item_id: str, db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    return _out(db, store.remove_item(db, ctx, order_id, item_id))


# ── Lifecycle ───────────────────────────────────────────────────────────────
@router.post("/{order_id}/status")
def update_status(order_id: str, body: OrderStatusIn, db: Session = Depends(get_db),
                  ctx: ActorContext = Depends(require_auth)):
    return _out(db, state.update_status(db, ctx, order_id, body.status, body.cancel_reason))


@router.post("/{order_id}/serve")
def serve_all(order_id: str, db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    return _out(db, store.mark_served(db, ctx, order_id))


@router.post("/{order_id}/accept")
def accept(order_id: str, db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    return _out(db, state.accept_order(db, ctx, order_id))


@router.post("/{order_id}/reject")
def reject(order_id: str, body: RejectIn, db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    return _out(db, state.reject_order(db, ctx, order_id, body.reason))


@router.post("/{order_id}/payment")
def update_payment(order_id: str, body: PaymentIn, db: Session = Depends(get_db),
                   ctx: ActorContext = Depends(require_auth)):
    return _out(db, payments.update_payment(db, ctx, order_id, body))
