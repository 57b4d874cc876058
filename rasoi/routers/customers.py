from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rasoi.context import ActorContext, MANAGEMENT_ROLES
from rasoi.db import get_db
from rasoi.deps import require_auth, require_role
from rasoi.schemas.customers import SettleIn
from rasoi.services import credit
from rasoi.services.customers import customer_row, get_customer, list_customers

router = APIRouter(prefix="/customers", tags=["customers"])


@router.get("/")
def list_all(search: str | None = None, with_credit: bool = False, page: int = 1, size: int = 20,
             db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    return list_customers(db, ctx, search=search, with_credit=with_credit, page=page, size=size)


@router.get("/{customer_id}")
def get_one(customer_id: str, db: Session = Depends(get_db), ctx: ActorContext = Depends(require_auth)):
    return customer_row(get_customer(db, ctx, customer_id))


@router.post("/{customer_id}/settle")
def settle(customer_id: str, body: SettleIn, db: Session = Depends(get_db),
           ctx: ActorContext = Depends(require_role(*MANAGEMENT_ROLES))):
    """Collect cash against the customer's credit; oldest orders are cleared first."""
    return credit.settle(db, ctx, customer_id, body.amount)


@router.post("/{customer_id}/credit/reconcile")
def reconcile(customer_id: str, db: Session = Depends(get_db),
              ctx: ActorContext = Depends(require_role(*MANAGEMENT_ROLES))):
    return credit.reconcile_credit(db, ctx, customer_id)
