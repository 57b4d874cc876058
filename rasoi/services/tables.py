import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rasoi.context import ActorContext
from rasoi.db import transaction
from rasoi.errors import NotFound, ValidationFailed
from rasoi.models.core import Hall, Order, OrderStatus, OrderType, RestaurantTable, TableStatus
from rasoi.schemas.dining import TableIn

logger = logging.getLogger(__name__)


def table_row(t: RestaurantTable) -> dict:
    return {
        "id": t.id,
        "hall_id": t.hall_id,
        "table_number": t.table_number,
        "seats": t.seats,
        "table_status": t.table_status.value,
    }


def get_table(db: Session, ctx: ActorContext, table_id: str, lock: bool = False) -> RestaurantTable:
    q = db.query(RestaurantTable).filter(
        RestaurantTable.id == table_id,
        RestaurantTable.tenant_id == ctx.tenant_id,
        RestaurantTable.restaurant_id == ctx.restaurant_id,
        RestaurantTable.deleted_at.is_(None),
    )
    if lock:
        q = q.with_for_update()
    t = q.first()
    if not t:
        raise NotFound("Table not found")
    return t


def find_table_by_number(db: Session, ctx: ActorContext, table_number: str) -> RestaurantTable | None:
    return (
        db.query(RestaurantTable)
        .filter(
            RestaurantTable.tenant_id == ctx.tenant_id,
            RestaurantTable.restaurant_id == ctx.restaurant_id,
            RestaurantTable.table_number == str(table_number).strip(),
            RestaurantTable.deleted_at.is_(None),
        )
        .first()
    )


def count_active_dine_in(db: Session, table_id: str) -> int:
    return (
        db.query(func.count(Order.id))
        .filter(
            Order.table_id == table_id,
            Order.order_type == OrderType.DINE_IN,
            Order.status == OrderStatus.ACTIVE,
        )
        .scalar()
        or 0
    )


def sync_table(db: Session, table_id: str | None) -> TableStatus | None:
    """
    Re-derive a table's status from its active dine-in orders.

    Runs inside the caller's transaction. Any active order forces OCCUPIED;
    with none, a RESERVED table stays reserved and anything else becomes
    AVAILABLE.
    """
    if not table_id:
        return None
    db.flush()
    t = db.query(RestaurantTable).filter(RestaurantTable.id == table_id).with_for_update().first()
    if not t:
        logger.warning("occupancy sync skipped, table %s no longer exists", table_id)
        return None

    active = count_active_dine_in(db, table_id)
    if active > 0:
        wanted = TableStatus.OCCUPIED
    elif t.table_status == TableStatus.RESERVED:
        wanted = TableStatus.RESERVED
    else:
        wanted = TableStatus.AVAILABLE

    if t.table_status != wanted:
        logger.info("table %s: %s -> %s (%d active orders)", t.table_number, t.table_status.value, wanted.value, active)
        t.table_status = wanted
    return wanted


def create_table(db: Session, ctx: ActorContext, body: TableIn) -> RestaurantTable:
    try:
        with transaction(db):
            if body.hall_id:
                hall = db.query(Hall).filter(
                    Hall.id == body.hall_id,
                    Hall.tenant_id == ctx.tenant_id,
                    Hall.restaurant_id == ctx.restaurant_id,
                ).first()
                if not hall:
                    raise NotFound("Hall not found")
            t = RestaurantTable(
                tenant_id=ctx.tenant_id,
                restaurant_id=ctx.restaurant_id,
                hall_id=body.hall_id,
                table_number=body.table_number.strip(),
                seats=body.seats,
                table_status=TableStatus.AVAILABLE,
            )
            db.add(t)
    except IntegrityError:
        raise ValidationFailed(f"Table {body.table_number} already exists")
    return t


def list_tables(db: Session, ctx: ActorContext, hall_id: str | None = None) -> list[RestaurantTable]:
    q = db.query(RestaurantTable).filter(
        RestaurantTable.tenant_id == ctx.tenant_id,
        RestaurantTable.restaurant_id == ctx.restaurant_id,
        RestaurantTable.deleted_at.is_(None),
    )
    if hall_id:
        q = q.filter(RestaurantTable.hall_id == hall_id)
    return q.order_by(RestaurantTable.table_number.asc()).all()


def set_table_status(db: Session, ctx: ActorContext, table_id: str, status: str) -> RestaurantTable:
    """Manual AVAILABLE/RESERVED switch; refused while diners are seated."""
    wanted = TableStatus(status)
    if wanted == TableStatus.OCCUPIED:
        raise ValidationFailed("OCCUPIED is derived from active orders and cannot be set manually")
    with transaction(db):
        t = get_table(db, ctx, table_id, lock=True)
        if count_active_dine_in(db, t.id) > 0:
            raise ValidationFailed(f"Table {t.table_number} has active orders")
        t.table_status = wanted
    return t
