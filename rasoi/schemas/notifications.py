from datetime import datetime
from pydantic import BaseModel
from typing import Optional, List

class NotificationOut(BaseModel):
    id: str
    kind: str
    timestamp: datetime
    title: str
    message: str
    read: bool
    link: Optional[str] = None
    order_id: Optional[str] = None
    order_status: Optional[str] = None

class MarkReadIn(BaseModel):
    ids: Optional[List[str]] = None  # None marks everything

class AdminMessageIn(BaseModel):
    user_id: str
    title: str
    message: str
