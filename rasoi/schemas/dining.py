from pydantic import BaseModel, Field
from typing import Optional, Literal

class TableIn(BaseModel):
    table_number: str = Field(min_length=1, max_length=20)
    hall_id: Optional[str] = None
    seats: int = Field(default=4, ge=1, le=50)

class TableStatusIn(BaseModel):
    # OCCUPIED is never set by hand; occupancy sync owns it
    table_status: Literal["AVAILABLE", "RESERVED"]
