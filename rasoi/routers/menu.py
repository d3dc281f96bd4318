from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List
from decimal import Decimal

from rasoi.db import get_db
from rasoi.deps import require_role
from rasoi.models.core import MenuItem, UserRole
from rasoi.schemas.menu import MenuItemIn, MenuItemOut, MenuItemPatch

router = APIRouter(prefix="/menu", tags=["menu"])


def _out(m: MenuItem) -> MenuItemOut:
    return MenuItemOut(id=m.id, name=m.name, description=m.description, price=float(m.price), is_active=m.is_active)


@router.get("/items", response_model=List[MenuItemOut])
def list_items(include_inactive: bool = False, db: Session = Depends(get_db)):
    q = db.query(MenuItem)
    if not include_inactive:
        q = q.filter(MenuItem.is_active.is_(True))
    return [_out(m) for m in q.order_by(MenuItem.name).all()]


@router.post("/items", response_model=MenuItemOut)
def create_item(body: MenuItemIn, db: Session = Depends(get_db), _=Depends(require_role(UserRole.ADMIN))):
    m = MenuItem(name=body.name, description=body.description,
                 price=Decimal(str(body.price)), is_active=body.is_active)
    db.add(m)
    db.commit()
    return _out(m)


@router.patch("/items/{item_id}", response_model=MenuItemOut)
def update_item(item_id: str, body: MenuItemPatch, db: Session = Depends(get_db),
                _=Depends(require_role(UserRole.ADMIN))):
    m = db.get(MenuItem, item_id)
    if not m:
        raise HTTPException(404, detail="menu item not found")
    data = body.model_dump(exclude_unset=True)
    if "price" in data and data["price"] is not None:
        # placed orders keep the price they were snapshotted with
        data["price"] = Decimal(str(data["price"]))
    for k, v in data.items():
        setattr(m, k, v)
    db.commit()
    return _out(m)
