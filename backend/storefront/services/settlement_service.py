# Overview: Settlement state machine; turns gateway outcomes into final Payment/Order state.

"""
Settlement State Machine

================================================================================
PURPOSE: Convert a gateway outcome into exactly one of
{order created & paid, payment failed, payment cancelled}
================================================================================

ENTRY POINTS:
- process_callback() / process_callback_envelope(): signed server-to-server
  notification (authoritative), as a JSON body or as the {data, signature}
  form envelope
- process_redirect(): browser returning from the gateway page (best effort,
  unsigned). Never settles on its own word: it either corroborates an
  existing non-terminal payment on an existing order, or asks the gateway
  for the real status and settles through the same path as a callback.

STATES (per purchase):
    Reserved -> Initiated -> {Completed | Failed | Cancelled}

RULES (NON-NEGOTIABLE):
1. No Order exists until the gateway confirmed payment
2. A terminal payment never changes status again (duplicates are no-ops,
   conflicting outcomes are recorded but not applied)
3. Stock and bonus fire once, in the same transaction as the PAID transition
4. Every idempotency check re-runs inside the retried unit of work; the
   uniqueness guards turn a lost race into a retry that sees the winner
5. The raw callback is kept on the payment whatever the branch

Results come back as SettlementResult values; only unexpected failures
(database down after retries) raise.

================================================================================
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from urllib.parse import quote

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import AuthenticationError, ConsistencyError, NotFoundError, StorefrontError, ValidationError
from ..models import Order, Payment, PaymentTarget, Reservation
from ..models.orders import (
    ORDER_PAID_OR_LATER,
    ORDER_STATUS_CANCELLED,
    ORDER_STATUS_FAILED,
)
from ..models.payments import (
    PAYMENT_STATUS_CANCELLED,
    PAYMENT_STATUS_COMPLETED,
    PAYMENT_STATUS_FAILED,
    PAYMENT_STATUS_INITIATED,
    PAYMENT_STATUS_REFUNDED,
)
from ..time_utils import utcnow
from ..validation import cents_to_decimal, parse_amount_to_cents
from .cart_service import clear_cart
from .concurrency import SETTLEMENT_RETRYABLE_ERRORS, lock_for_update, run_with_retry
from .order_service import find_order, mark_paid, materialize
from .payment_service import get_gateway_client
from .reservation_service import delete_reservation, get_reservation, load_snapshot
from .settings_service import SettlementSettings, load_settlement_settings


OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_CANCELLED = "cancelled"
OUTCOME_IGNORED = "ignored"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_CONFLICT = "conflict"
OUTCOME_ALREADY_SETTLED = "already_settled"
OUTCOME_REJECTED = "rejected"

ERROR_VALIDATION = "validation"
ERROR_AUTHENTICATION = "authentication"
ERROR_NOT_FOUND = "not_found"
ERROR_CONFLICT = "conflict"

SOURCE_CALLBACK = "callback"
SOURCE_REDIRECT = "redirect"
SOURCE_RECONCILE = "reconcile"

# Gateway status (lowercased) -> terminal payment status
STATUS_MAP = {
    "success": PAYMENT_STATUS_COMPLETED,
    "completed": PAYMENT_STATUS_COMPLETED,
    "failed": PAYMENT_STATUS_FAILED,
    "error": PAYMENT_STATUS_FAILED,
    "cancelled": PAYMENT_STATUS_CANCELLED,
}

OUTCOME_BY_STATUS = {
    PAYMENT_STATUS_COMPLETED: OUTCOME_COMPLETED,
    PAYMENT_STATUS_FAILED: OUTCOME_FAILED,
    PAYMENT_STATUS_CANCELLED: OUTCOME_CANCELLED,
}

ORDER_STATUS_BY_PAYMENT_STATUS = {
    PAYMENT_STATUS_FAILED: ORDER_STATUS_FAILED,
    PAYMENT_STATUS_CANCELLED: ORDER_STATUS_CANCELLED,
}

REQUIRED_CALLBACK_FIELDS = ("order_id", "status", "signature")

REDIRECT_ORDER_KEYS = ("order_id", "order", "orderId", "order_number", "orderNumber")
REDIRECT_TRANSACTION_KEYS = ("transaction_id", "transaction", "transactionId", "trans_id")

UNKNOWN_TRANSACTION_PREFIX = "UNKNOWN_"


def classify_status(status: str | None) -> str | None:
    """Terminal payment status for a gateway status string, or None if unrecognized."""
    return STATUS_MAP.get((status or "").strip().lower())


@dataclass(frozen=True)
class GatewayEvent:
    """One gateway outcome, normalized from a callback or a status query."""
    identifier: str
    status: str
    transaction_id: str | None = None
    amount: Decimal | None = None
    currency: str | None = None
    message: str | None = None
    raw: str | None = None
    source: str = SOURCE_CALLBACK


@dataclass
class SettlementResult:
    ok: bool
    outcome: str
    error_kind: str | None = None
    detail: str | None = None
    identifier: str | None = None
    payment_id: int | None = None
    order_public_id: str | None = None
    order_number: str | None = None

    @property
    def http_status(self) -> int:
        # Unknown identifiers are 400 on the callback path, not 404
        return 200 if self.ok else 400

    def to_dict(self) -> dict:
        if not self.ok:
            return {"error": self.detail, "kind": self.error_kind}
        body = {"message": self.detail, "outcome": self.outcome}
        if self.order_number:
            body["order_number"] = self.order_number
        return body


def _rejected(kind: str, detail: str, identifier: str | None = None) -> SettlementResult:
    return SettlementResult(ok=False, outcome=OUTCOME_REJECTED, error_kind=kind, detail=detail, identifier=identifier)


def _error_kind(exc: StorefrontError) -> str:
    if isinstance(exc, AuthenticationError):
        return ERROR_AUTHENTICATION
    if isinstance(exc, NotFoundError):
        return ERROR_NOT_FOUND
    return ERROR_VALIDATION


def _to_decimal(value) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None


def _dump_raw(payload: Mapping) -> str:
    return json.dumps(dict(payload), default=str)


# =============================================================================
# CALLBACK
# =============================================================================

def process_callback(payload, settings: SettlementSettings | None = None) -> SettlementResult:
    """
    Apply a signed gateway callback.

    payload is the parsed callback body; decimals must be Decimal (parse the
    JSON with parse_float=Decimal) so the signature is recomputed over the
    exact amount text the gateway signed.
    """
    try:
        event = _authenticated_callback(payload)
    except StorefrontError as exc:
        return _rejected(_error_kind(exc), exc.message, exc.details.get("order_id"))
    return settle(event, settings)


def process_callback_envelope(data: str, signature: str, settings: SettlementSettings | None = None) -> SettlementResult:
    """
    Apply a callback delivered as the gateway's form envelope {data, signature}.

    The signature covers the base64 `data` string itself, so it is checked
    before anything is decoded.
    """
    try:
        event = _authenticated_envelope(data, signature)
    except StorefrontError as exc:
        return _rejected(_error_kind(exc), exc.message, exc.details.get("order_id"))
    return settle(event, settings)


def _require_fields(payload: Mapping, fields: tuple[str, ...]) -> None:
    missing = [f for f in fields if not payload.get(f)]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")


def _authenticated_callback(payload) -> GatewayEvent:
    if not isinstance(payload, Mapping):
        raise ValidationError("Callback body must be a JSON object")
    _require_fields(payload, REQUIRED_CALLBACK_FIELDS)

    identifier = str(payload.get("order_id"))
    if not get_gateway_client().codec.verify_callback(payload):
        current_app.logger.warning(
            "Invalid signature in gateway callback for %s (transaction %s)",
            identifier, payload.get("transaction_id"),
        )
        raise AuthenticationError("Invalid signature", details={"order_id": identifier})
    return _callback_event(payload)


def _authenticated_envelope(data: str, signature: str) -> GatewayEvent:
    if not data or not signature:
        raise ValidationError("Missing required field(s): data, signature")

    codec = get_gateway_client().codec
    if not codec.verify_data(data, signature):
        current_app.logger.warning("Invalid signature on gateway callback envelope")
        raise AuthenticationError("Invalid signature")

    try:
        payload = codec.decode_data(data)
    except ValueError as exc:
        raise ValidationError("Callback data is not valid base64 JSON") from exc
    _require_fields(payload, ("order_id", "status"))
    return _callback_event(payload)


def _callback_event(payload: Mapping) -> GatewayEvent:
    return GatewayEvent(
        identifier=str(payload.get("order_id")),
        status=str(payload.get("status")),
        transaction_id=payload.get("transaction_id") or payload.get("transaction") or None,
        amount=_to_decimal(payload.get("amount")),
        currency=payload.get("currency"),
        message=payload.get("message"),
        raw=_dump_raw(payload),
        source=SOURCE_CALLBACK,
    )


def settle(event: GatewayEvent, settings: SettlementSettings | None = None) -> SettlementResult:
    """Run one settlement as a retried unit of work."""
    settings = settings or load_settlement_settings()
    try:
        return run_with_retry(
            lambda: _settle(event, settings),
            retry_on=SETTLEMENT_RETRYABLE_ERRORS,
        )
    except StorefrontError as exc:
        db.session.rollback()
        current_app.logger.warning("Settlement of %s rejected: %s", event.identifier, exc.message)
        return _rejected(_error_kind(exc), exc.message, event.identifier)
    except IntegrityError as exc:
        # Retries did not help: the event itself collides with stored data,
        # e.g. a transaction id already recorded on another payment
        db.session.rollback()
        current_app.logger.warning(
            "Settlement of %s (transaction %s) violates %s; rejected",
            event.identifier, event.transaction_id, exc.orig,
        )
        return _rejected(ERROR_CONFLICT, "Gateway data conflicts with an existing payment", event.identifier)


def _find_payment(identifier: str, order: Order | None) -> Payment | None:
    if order is not None and order.payment_id is not None:
        payment = lock_for_update(db.session.query(Payment).filter_by(id=order.payment_id)).first()
        if payment is not None:
            return payment
    return lock_for_update(
        db.session.query(Payment).filter(Payment.target_reference == identifier)
    ).order_by(Payment.id.desc()).first()


def _synthesize_payment(event: GatewayEvent, order: Order | None, reservation: Reservation | None) -> Payment:
    """Recreate a missing payment row from gateway data rather than lose track of money."""
    if order is not None:
        target = PaymentTarget.order(order.public_id)
        fallback_cents = order.total_cents
    else:
        target = PaymentTarget.reservation(reservation.id)
        fallback_cents = reservation.total_cents

    amount_cents = fallback_cents
    if event.amount is not None:
        try:
            amount_cents = parse_amount_to_cents(event.amount)
        except ValidationError:
            amount_cents = fallback_cents

    issue = ConsistencyError(
        f"Payment record not found for {event.identifier}",
        details={"transaction_id": event.transaction_id, "source": event.source},
    )
    current_app.logger.warning("%s; creating one from gateway data %s", issue.message, issue.details)

    payment = Payment(
        target=target,
        gateway_transaction_id=event.transaction_id or f"{UNKNOWN_TRANSACTION_PREFIX}{uuid.uuid4()}",
        amount_cents=amount_cents,
        currency=event.currency or "AZN",
        status=PAYMENT_STATUS_INITIATED,
    )
    db.session.add(payment)
    db.session.flush()
    if order is not None and order.payment_id is None:
        order.payment_id = payment.id
    return payment


def _record_event(payment: Payment, event: GatewayEvent) -> None:
    if event.raw is not None:
        payment.callback_data = event.raw

    incoming = event.transaction_id
    if not incoming or incoming == payment.gateway_transaction_id or payment.is_terminal:
        return
    if payment.has_placeholder_transaction:
        payment.gateway_transaction_id = incoming
    else:
        current_app.logger.warning(
            "Gateway transaction %s for %s differs from recorded %s",
            incoming, event.identifier, payment.gateway_transaction_id,
        )


def _settled(outcome: str, detail: str, event: GatewayEvent, payment: Payment | None, order: Order | None = None):
    return SettlementResult(
        ok=True,
        outcome=outcome,
        detail=detail,
        identifier=event.identifier,
        payment_id=payment.id if payment is not None else None,
        order_public_id=order.public_id if order is not None else None,
        order_number=order.order_number if order is not None else None,
    )


def _settle(event: GatewayEvent, settings: SettlementSettings) -> SettlementResult:
    identifier = event.identifier
    target_status = classify_status(event.status)

    order = find_order(identifier, lock=True)
    reservation = None if order is not None else get_reservation(identifier, lock=True)
    payment = _find_payment(identifier, order)

    if order is None and reservation is None:
        if payment is None:
            db.session.rollback()
            current_app.logger.warning("Gateway %s for unknown order %s", event.source, identifier)
            return _rejected(ERROR_NOT_FOUND, "Order not found", identifier)

        # Reservation gone: settled earlier, failed at initiation, or expired
        _record_event(payment, event)
        db.session.commit()
        if target_status == PAYMENT_STATUS_COMPLETED and payment.status != PAYMENT_STATUS_COMPLETED:
            current_app.logger.error(
                "Gateway confirmed payment %s (transaction %s) for %s after the reservation "
                "was closed with status %s; refund manually",
                payment.id, event.transaction_id, identifier, payment.status,
            )
        else:
            current_app.logger.warning(
                "Gateway %s for closed reservation %s (payment %s is %s)",
                event.source, identifier, payment.id, payment.status,
            )
        return _settled(OUTCOME_ALREADY_SETTLED, "Purchase already settled or expired", event, payment)

    if payment is None:
        payment = _synthesize_payment(event, order, reservation)

    _record_event(payment, event)

    if payment.is_terminal:
        return _settle_terminal(event, target_status, payment, order)

    if target_status is None:
        payment.error_message = f"Unrecognized gateway status: {event.status}"[:1000]
        db.session.commit()
        current_app.logger.warning(
            "Unrecognized gateway status %r for %s; no transition", event.status, identifier,
        )
        return _settled(OUTCOME_IGNORED, "Unrecognized status recorded", event, payment, order)

    if target_status == PAYMENT_STATUS_COMPLETED:
        return _complete(event, settings, payment, order, reservation)
    return _close(event, target_status, payment, order, reservation)


def _settle_terminal(event: GatewayEvent, target_status: str | None, payment: Payment, order: Order | None):
    same = target_status == payment.status or (
        target_status == PAYMENT_STATUS_COMPLETED and payment.status == PAYMENT_STATUS_REFUNDED
    )
    if same or target_status is None:
        db.session.commit()
        current_app.logger.info(
            "Duplicate gateway %s for %s (payment %s already %s)",
            event.source, event.identifier, payment.id, payment.status,
        )
        return _settled(OUTCOME_DUPLICATE, "Callback already processed", event, payment, order)

    payment.error_message = (
        f"Conflicting gateway status '{event.status}' ignored; payment already {payment.status}"
    )[:1000]
    db.session.commit()
    current_app.logger.warning(
        "Conflicting gateway %s for %s: %s after %s; keeping %s",
        event.source, event.identifier, event.status, payment.status, payment.status,
    )
    return _settled(OUTCOME_CONFLICT, "Conflicting status ignored", event, payment, order)


def _check_amount(event: GatewayEvent, payment: Payment) -> None:
    if event.amount is None:
        return
    expected = cents_to_decimal(payment.amount_cents)
    if event.amount != expected:
        note = f"Amount mismatch: gateway reported {event.amount}, expected {expected}"
        payment.error_message = note
        current_app.logger.warning("%s for %s (payment %s)", note, event.identifier, payment.id)


def _complete(
    event: GatewayEvent,
    settings: SettlementSettings,
    payment: Payment,
    order: Order | None,
    reservation: Reservation | None,
) -> SettlementResult:
    cart_id = None
    if order is None:
        cart_id = load_snapshot(reservation).cart_id
        order = materialize(reservation, payment)

    _check_amount(event, payment)

    payment.target = PaymentTarget.order(order.public_id)
    payment.status = PAYMENT_STATUS_COMPLETED
    payment.completed_at = utcnow()
    order.payment_id = payment.id

    mark_paid(order, settings)

    if reservation is not None:
        delete_reservation(reservation)
        clear_cart(cart_id)

    db.session.commit()
    current_app.logger.info(
        "Payment %s completed via %s; order %s is PAID", payment.id, event.source, order.order_number,
    )
    return _settled(OUTCOME_COMPLETED, "Callback processed successfully", event, payment, order)


def _close(
    event: GatewayEvent,
    target_status: str,
    payment: Payment,
    order: Order | None,
    reservation: Reservation | None,
) -> SettlementResult:
    payment.status = target_status
    if event.message:
        payment.error_message = str(event.message)[:1000]
    elif not payment.error_message:
        payment.error_message = f"Payment {event.status.lower()}"

    if reservation is not None:
        delete_reservation(reservation)

    if order is not None and order.status not in ORDER_PAID_OR_LATER:
        order.status = ORDER_STATUS_BY_PAYMENT_STATUS[target_status]
        order.updated_at = utcnow()

    db.session.commit()
    current_app.logger.warning(
        "Payment %s for %s %s via %s: %s",
        payment.id, event.identifier, target_status, event.source, payment.error_message,
    )
    return _settled(OUTCOME_BY_STATUS[target_status], "Callback processed successfully", event, payment, order)


# =============================================================================
# BROWSER REDIRECT
# =============================================================================

REDIRECT_SUCCESS = "success"
REDIRECT_ERROR = "error"


@dataclass
class RedirectResult:
    kind: str
    order_id: str | None = None
    transaction_id: str | None = None
    message: str | None = None
    action: str = "none"
    settlement: SettlementResult | None = None

    def frontend_url(self, base_url: str) -> str:
        base = base_url.rstrip("/")
        order_id = quote(self.order_id or "", safe="")
        transaction_id = quote(self.transaction_id or "", safe="")
        if self.kind == REDIRECT_SUCCESS:
            return f"{base}/payment/success?orderId={order_id}&transactionId={transaction_id}&status=paid"
        message = quote(self.message or "", safe="")
        return (
            f"{base}/payment/error?orderId={order_id}&transactionId={transaction_id}"
            f"&message={message}&status=failed"
        )


def _probe(params: Mapping, keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = params.get(key)
        if value:
            return str(value).strip() or None
    return None


def process_redirect(kind: str, params: Mapping) -> RedirectResult:
    """
    Best-effort settlement from a browser redirect. Never raises.

    Parameter names vary between gateway configurations, so every known
    variant is probed.
    """
    result = RedirectResult(
        kind=kind,
        order_id=_probe(params, REDIRECT_ORDER_KEYS),
        transaction_id=_probe(params, REDIRECT_TRANSACTION_KEYS),
        message=params.get("message"),
    )
    current_app.logger.info(
        "Payment %s redirect: order=%s transaction=%s", kind, result.order_id, result.transaction_id,
    )
    if not result.order_id:
        return result

    try:
        settings = load_settlement_settings()
        if not settings.reconcile_redirects:
            result.action = "disabled"
            return result
        _reconcile_redirect(result, settings)
    except Exception:
        db.session.rollback()
        result.action = "error"
        current_app.logger.exception("Error reconciling payment %s redirect for %s", kind, result.order_id)
    return result


def _resolve_redirect_order(reference: str) -> Order | None:
    order = find_order(reference)
    if order is None:
        order = db.session.query(Order).filter_by(order_number=reference).first()
    return order


def _reconcile_redirect(result: RedirectResult, settings: SettlementSettings) -> None:
    order = _resolve_redirect_order(result.order_id)
    if order is not None:
        _corroborate_order(result, order, settings)
        return

    reservation = get_reservation(result.order_id)
    if reservation is None:
        result.action = "unknown"
        return
    _reconcile_reservation(result, reservation.id, settings)


def _corroborate_order(result: RedirectResult, order: Order, settings: SettlementSettings) -> None:
    """Existing order, unpaid, with a matching open payment: the redirect confirms it."""
    if result.kind != REDIRECT_SUCCESS or order.status in ORDER_PAID_OR_LATER:
        result.action = "none"
        return

    payment = _find_payment(order.public_id, order)
    if payment is None or payment.is_terminal:
        db.session.rollback()
        result.action = "none"
        return

    matches = (
        payment.has_placeholder_transaction
        or (result.transaction_id and payment.gateway_transaction_id == result.transaction_id)
    )
    if not matches:
        db.session.rollback()
        result.action = "mismatch"
        return

    public_id = order.public_id
    db.session.rollback()
    event = GatewayEvent(
        identifier=public_id,
        status=REDIRECT_SUCCESS,
        transaction_id=result.transaction_id,
        source=SOURCE_REDIRECT,
    )
    result.settlement = settle(event, settings)
    result.action = "corroborated"


def _status_matches_purchase(response, reservation_id: str, expected_amount: Decimal) -> bool:
    """The queried transaction must belong to this reservation and carry its amount."""
    if response.order_id is not None and str(response.order_id) != reservation_id:
        return False
    if response.amount is not None:
        return response.amount == expected_amount
    # A confirmation without an amount cannot be checked against the charge
    return classify_status(response.status) != PAYMENT_STATUS_COMPLETED


def _reconcile_reservation(result: RedirectResult, reservation_id: str, settings: SettlementSettings) -> None:
    """
    Reservation still open: ask the gateway what actually happened.

    Only the transaction id the gateway issued at initiation is queried; the
    id in the redirect URL is unsigned and is never trusted.
    """
    payment = lock_for_update(
        db.session.query(Payment).filter(Payment.target_reference == reservation_id)
    ).order_by(Payment.id.desc()).first()
    if payment is None or payment.is_terminal:
        db.session.rollback()
        result.action = "none"
        return

    transaction_id = None if payment.has_placeholder_transaction else payment.gateway_transaction_id
    expected_amount = cents_to_decimal(payment.amount_cents)
    # Release row locks before the outbound call
    db.session.rollback()

    if not transaction_id:
        result.action = "no_transaction"
        return

    response = get_gateway_client().get_status(transaction_id)
    if response.call_failed:
        current_app.logger.warning(
            "Status query for %s (transaction %s) failed: %s", reservation_id, transaction_id, response.message,
        )
        result.action = "gateway_unavailable"
        return

    if classify_status(response.status) is None:
        result.action = "pending"
        return

    if not _status_matches_purchase(response, reservation_id, expected_amount):
        current_app.logger.warning(
            "Status of transaction %s does not match reservation %s "
            "(gateway order %s, amount %s, expected %s); not settling",
            transaction_id, reservation_id, response.order_id, response.amount, expected_amount,
        )
        result.action = "mismatch"
        return

    event = GatewayEvent(
        identifier=reservation_id,
        status=response.status,
        transaction_id=transaction_id,
        amount=response.amount,
        message=response.message,
        source=SOURCE_RECONCILE,
    )
    result.settlement = settle(event, settings)
    result.action = "reconciled"
