from pydantic import BaseModel, Field
from typing import Optional, Literal

PlatformLiteral = Literal["ZOMATO", "SWIGGY"]

class IntegrationIn(BaseModel):
    platform: PlatformLiteral
    external_restaurant_id: str = Field(min_length=1, max_length=80)
    webhook_secret: str = Field(min_length=8, max_length=255)
    auto_accept: bool = False

class IntegrationUpdate(BaseModel):
    external_restaurant_id: Optional[str] = Field(default=None, min_length=1, max_length=80)
    webhook_secret: Optional[str] = Field(default=None, min_length=8, max_length=255)
    is_enabled: Optional[bool] = None
    auto_accept: Optional[bool] = None

class MenuMapIn(BaseModel):
    external_item_id: str = Field(min_length=1, max_length=80)
    product_id: str
    is_active: bool = True
