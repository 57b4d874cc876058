from decimal import Decimal
from pydantic import BaseModel

class SettleIn(BaseModel):
    # sign is checked by the allocator so the error names the rule
    amount: Decimal
