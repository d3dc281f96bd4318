from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from rasoi.db import get_db
from rasoi.config import settings
from rasoi.deps import require_role
from rasoi.models.core import User, UserRole, AdminMessage
from rasoi.schemas.notifications import AdminMessageIn
from rasoi.util.security import Principal, hash_pw

router = APIRouter(prefix="/admin", tags=["admin"])

@router.post("/dev-bootstrap")
def dev_bootstrap(db: Session = Depends(get_db)):
    if settings.APP_ENV != "dev":
        raise HTTPException(403, detail="Not allowed")

    u = db.query(User).filter(User.role == UserRole.ADMIN).first()
    if not u:
        u = User(
            name="Admin",
            phone="9999999999",
            email="admin@example.com",
            pass_hash=hash_pw("admin"),
            role=UserRole.ADMIN,
            active=True,
        )
        db.add(u)
        db.commit()
    return {"admin_user_id": u.id, "login": u.phone}

@router.post("/messages")
def send_message(body: AdminMessageIn, db: Session = Depends(get_db),
                 principal: Principal = Depends(require_role(UserRole.ADMIN))):
    if not db.get(User, body.user_id):
        raise HTTPException(404, detail="user not found")
    m = AdminMessage(user_id=body.user_id, title=body.title, message=body.message)
    db.add(m)
    db.commit()
    return {"id": m.id}
