from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rasoi.db import get_db
from rasoi.deps import require_auth
from rasoi.models.common import as_utc
from rasoi.schemas.notifications import MarkReadIn, NotificationOut
from rasoi.services.notifications import Actor, list_notifications, mark_read
from rasoi.util.security import Principal

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/", response_model=List[NotificationOut])
def my_notifications(db: Session = Depends(get_db), principal: Principal = Depends(require_auth)):
    """The caller's notification log, newest first, brought up to date on every read."""
    return [
        NotificationOut(id=n.notif_id, kind=n.kind, timestamp=as_utc(n.at), title=n.title, message=n.message,
                        read=n.read, link=n.link, order_id=n.order_id, order_status=n.order_status)
        for n in list_notifications(db, Actor.of(principal))
    ]


@router.post("/mark-read")
def mark_notifications_read(body: MarkReadIn, db: Session = Depends(get_db),
                            principal: Principal = Depends(require_auth)):
    return {"updated": mark_read(db, Actor.of(principal), body.ids)}
