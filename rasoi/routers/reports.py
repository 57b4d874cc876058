from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rasoi.context import ActorContext, MANAGEMENT_ROLES
from rasoi.db import get_db
from rasoi.deps import require_auth, require_role
from rasoi.services import billing

router = APIRouter(prefix="/reports", tags=["reports"])


@router.get("/table_bill/{table_id}")
def table_bill(table_id: str, db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    return billing.table_bill(db, ctx, table_id)


@router.get("/daily_bills")
def daily_bills(day: date | None = None, db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    return billing.daily_bills(db, ctx, day or datetime.now(timezone.utc).date())


@router.get("/revenue")
def revenue(start: date, end: date, db: Session = Depends(get_db),
            ctx: ActorContext = Depends(require_role(*MANAGEMENT_ROLES))):
    return billing.revenue_summary(db, ctx, start, end)


@router.get("/receivables")
def receivables(db: Session = Depends(get_db), ctx: ActorContext = Depends(require_role(*MANAGEMENT_ROLES))):
    return billing.receivables(db, ctx)
