from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rasoi.db import get_db
from rasoi.schemas.orders import CartIn, QuoteOut
from rasoi.services.checkout import price_cart

router = APIRouter(prefix="/pricing", tags=["pricing"])


@router.post("/quote", response_model=QuoteOut)
def quote(body: CartIn, db: Session = Depends(get_db)):
    """Price preview for a cart; runs exactly what checkout runs."""
    cart = price_cart(db, body)
    return QuoteOut(**cart.price.as_dict(), coupon_code=cart.coupon_code)
