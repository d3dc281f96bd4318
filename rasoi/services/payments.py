"""
Payment verification.

Both gateway entry points prove authenticity with an HMAC-SHA256 keyed by a
secret only we and the gateway hold:

* the client-reported callback signs ``"<gateway_order_id>|<payment_id>"``
  with ``PAYMENT_KEY_SECRET``;
* the server-to-server webhook signs the raw request body with
  ``PAYMENT_WEBHOOK_SECRET`` and sends the digest in ``X-Signature``.

Webhooks are delivered at least once. Handling one only ever moves an order
forward along legal edges with guarded writes, so a repeat delivery finds
nothing left to do.
"""
import hashlib
import hmac
import json
import logging

from rasoi.config import settings
from rasoi.models.core import Order, OrderStatus, PayMethod, User
from rasoi.services.checkout import build_draft, claim_gateway_order, create_or_reread
from rasoi.services.errors import InvalidSignature, ValidationError
from rasoi.services.lifecycle import FORWARD_EDGES, apply_transition
from rasoi.services.store import Conflict, OrderStore
from rasoi.util.audit import audit

logger = logging.getLogger(__name__)

S = OrderStatus

CAPTURED = "payment.captured"

# statuses at or past the point a captured payment takes an order to
PAID_AND_CONFIRMED = frozenset({S.CONFIRMED, S.PREPARING, S.SHIPPED, S.OUT_FOR_DELIVERY, S.DELIVERED})


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()

def callback_signature(gateway_order_id: str, payment_id: str) -> str:
    return _hmac_hex(settings.PAYMENT_KEY_SECRET, f"{gateway_order_id}|{payment_id}".encode("utf-8"))

def webhook_signature(raw_body: bytes) -> str:
    return _hmac_hex(settings.PAYMENT_WEBHOOK_SECRET, raw_body)

def signature_matches(expected: str, supplied: str | None) -> bool:
    return hmac.compare_digest(expected.encode("utf-8"), (supplied or "").encode("utf-8"))


def verify_callback(store: OrderStore, user: User, gateway_order_id: str, payment_id: str,
                    signature: str, draft_body) -> Order:
    """
    Verify a client-reported payment and place the order. A PAYMENT_PENDING
    order for the gateway order moves to ORDER_PLACED; with no such order the
    draft is priced and stored directly as ORDER_PLACED.
    """
    if not signature_matches(callback_signature(gateway_order_id, payment_id), signature):
        logger.error("callback signature mismatch: user=%s gateway_order=%s payment=%s",
                     user.id, gateway_order_id, payment_id)
        audit(store.db, user.id, "Payment", gateway_order_id, "INVALID_SIGNATURE",
              after={"payment_id": payment_id, "channel": "callback"})
        store.commit()
        raise InvalidSignature()

    existing = claim_gateway_order(store.by_gateway_order(gateway_order_id), user)
    if existing is not None:
        return _settle_existing(store, existing, payment_id)

    if draft_body is None:
        raise ValidationError("order draft is required")
    draft = build_draft(store.db, user, draft_body, status=S.ORDER_PLACED, payment_method=PayMethod.GATEWAY,
                        gateway_order_id=gateway_order_id, gateway_payment_id=payment_id)
    o, created = create_or_reread(store, user, draft)
    if not created:
        return _settle_existing(store, o, payment_id)
    logger.info("order %s placed from verified payment %s", o.id, payment_id)
    return o


def _settle_existing(store: OrderStore, o: Order, payment_id: str) -> Order:
    if o.status is S.PAYMENT_PENDING:
        result = apply_transition(store, o, S.ORDER_PLACED, changes={"gateway_payment_id": payment_id})
        if not isinstance(result, Conflict):
            store.commit()
            return result
        # the webhook got there first
        store.rollback()
        o = result.current

    if o.gateway_payment_id == payment_id:
        return o
    if o.status is S.CANCELLED:
        logger.error("payment %s captured for cancelled order %s; refund needed", payment_id, o.id)
        raise ValidationError("order was cancelled before payment completed; it will be refunded")
    logger.warning("order %s already settled by payment %s, got %s", o.id, o.gateway_payment_id, payment_id)
    raise ValidationError("order is already paid")


def handle_webhook(store: OrderStore, raw_body: bytes, signature: str | None) -> str:
    """Process one webhook delivery and return a short outcome label for the log."""
    if not signature or not signature_matches(webhook_signature(raw_body), signature):
        logger.error("webhook signature mismatch (signature present: %s, %d bytes)", bool(signature), len(raw_body))
        audit(store.db, None, "Payment", "webhook", "INVALID_SIGNATURE",
              after={"channel": "webhook", "body_sha256": hashlib.sha256(raw_body).hexdigest()})
        store.commit()
        return "invalid_signature"

    try:
        payload = json.loads(raw_body)
    except ValueError:
        logger.error("webhook body is not JSON")
        return "malformed"

    event = payload.get("event")
    if event != CAPTURED:
        logger.info("webhook event %s ignored", event)
        return "ignored"

    entities = payload.get("payload") or {}
    payment = (entities.get("payment") or {}).get("entity") or {}
    gateway_order = (entities.get("order") or {}).get("entity") or {}
    gateway_order_id = gateway_order.get("id") or payment.get("order_id")
    payment_id = payment.get("id")
    if not gateway_order_id:
        logger.error("captured payment %s carries no gateway order id", payment_id)
        return "malformed"

    o = store.by_gateway_order(gateway_order_id)
    if o is None:
        logger.warning("no order for gateway order %s (payment %s)", gateway_order_id, payment_id)
        return "unknown_order"

    confirm_paid(store, o, payment_id)
    return "processed"


def confirm_paid(store: OrderStore, o: Order, payment_id: str | None) -> Order:
    """Walk a paid order forward to CONFIRMED. Already CONFIRMED or later is a no-op."""
    for _ in range(len(FORWARD_EDGES)):
        if o.status in PAID_AND_CONFIRMED:
            return o
        if o.status is S.CANCELLED:
            logger.error("payment %s captured for cancelled order %s; refund needed", payment_id, o.id)
            return o

        changes = {}
        if payment_id and not o.gateway_payment_id:
            changes["gateway_payment_id"] = payment_id
        result = apply_transition(store, o, FORWARD_EDGES[o.status], changes=changes)
        if isinstance(result, Conflict):
            store.rollback()
            o = result.current
            continue
        store.commit()
        o = result
    return o
