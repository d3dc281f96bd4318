import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from rasoi.db import get_db
from rasoi.deps import current_user
from rasoi.models.core import User
from rasoi.schemas.orders import OrderOut
from rasoi.schemas.payments import CallbackIn, CallbackOut
from rasoi.services import payments
from rasoi.services.errors import OrderFlowError
from rasoi.services.store import run_with_retry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/callback", response_model=CallbackOut)
def payment_callback(body: CallbackIn, db: Session = Depends(get_db), user: User = Depends(current_user)):
    """Client-reported payment success. Places the order once the signature checks out."""
    try:
        o = run_with_retry(db, lambda store: payments.verify_callback(
            store, user, body.gateway_order_id, body.payment_id, body.signature, body.order))
    except OrderFlowError as e:
        return JSONResponse(status_code=e.status_code,
                            content=CallbackOut(success=False, error=e.detail).model_dump())
    return CallbackOut(success=True, order=OrderOut.from_order(o, show_code=True))


@router.post("/webhook")
async def payment_webhook(request: Request, x_signature: str | None = Header(default=None),
                          db: Session = Depends(get_db)):
    """
    Gateway-to-server notification. The signature covers the raw bytes, so
    the body is read before any parsing. Always answers 200; outcomes go
    to the log.
    """
    raw = await request.body()
    try:
        outcome = await run_in_threadpool(
            run_with_retry, db, lambda store: payments.handle_webhook(store, raw, x_signature))
    except Exception:
        logger.exception("webhook processing failed")
        outcome = "error"
    logger.info("payment webhook: %s", outcome)
    return {"status": "ok"}
