# rasoi/routers/dining.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from rasoi.context import ActorContext, MANAGEMENT_ROLES
from rasoi.db import get_db
from rasoi.deps import require_auth, require_role
from rasoi.schemas.dining import TableIn, TableStatusIn
from rasoi.services import tables

router = APIRouter(prefix="/dining", tags=["dining"])


# ------------------------------------------------------------------
# POST /dining/tables  -> create new table
# ------------------------------------------------------------------
@router.post("/tables", status_code=201)
def create_table(body: TableIn, db: Session = Depends(get_db),
                 ctx: ActorContext = Depends(require_role(*MANAGEMENT_ROLES))):
    return tables.table_row(tables.create_table(db, ctx, body))


# ------------------------------------------------------------------
# GET /dining/tables  -> list tables with their current status
# ------------------------------------------------------------------
@router.get("/tables")
def list_tables(hall_id: Optional[str] = None, db: Session = Depends(get_db),
                ctx: ActorContext = Depends(require_auth)):
    """
    Status is stored, not computed here: every order operation re-syncs
    the table it touches, so listing is a plain read.
    """
    return [tables.table_row(t) for t in tables.list_tables(db, ctx, hall_id=hall_id)]


# ------------------------------------------------------------------
# POST /dining/tables/{table_id}/status  -> reserve / release
# ------------------------------------------------------------------
@router.post("/tables/{table_id}/status")
def set_status(table_id: str, body: TableStatusIn, db: Session = Depends(get_db),
               ctx: ActorContext = Depends(require_auth)):
    return tables.table_row(tables.set_table_status(db, ctx, table_id, body.table_status))
