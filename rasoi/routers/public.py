from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rasoi.context import ActorContext
from rasoi.db import get_db
from rasoi.deps import public_context
from rasoi.schemas.orders import PublicOrderIn
from rasoi.services import orders as store
from rasoi.services.pricing import as_float

router = APIRouter(prefix="/public", tags=["public"])


@router.post("/{slug}/orders", status_code=201)
def place_order(body: PublicOrderIn, db: Session = Depends(get_db), ctx: ActorContext = Depends(public_context)):
    """QR / web ordering. The order waits for staff to accept it."""
    order = store.create_order(
        db, ctx, body.items,
        source=body.source,
        table_number=body.table_number,
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
        notes=body.notes,
        confirmed=False,
        overwrite_customer_name=False,
    )
    items = store.load_items(db, order.id)
    return {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status.value,
        "table_number": order.table_number,
        "total_amount": as_float(order.total_amount),
        "items": [
            {"name": i.name_snapshot, "quantity": i.quantity, "price": as_float(i.price_snapshot)}
            for i in items
        ],
    }
