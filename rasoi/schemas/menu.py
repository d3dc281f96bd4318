from pydantic import BaseModel, Field
from typing import Optional

class MenuItemIn(BaseModel):
    name: str
    description: Optional[str] = None
    price: float = Field(gt=0)
    is_active: bool = True

class MenuItemPatch(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(default=None, gt=0)
    is_active: Optional[bool] = None

class MenuItemOut(MenuItemIn):
    id: str
