"""Apply provider notifications to orders exactly once.

Every channel (browser redirect, server callback, status poll) goes through
``reconcile``. The write is one conditional update at the order store plus an
audit insert in the same transaction; a notification that loses that update
is classified against the order's terminal state instead.
"""
import logging
from dataclasses import dataclass

from django.db import DatabaseError, transaction

from orders import store
from .exceptions import PersistenceFailure
from .models import Payment
from .notifications import Notification
from .signals import conflicting_notification, orphan_notification

logger = logging.getLogger(__name__)

SUCCESS_CODES = {"PAYMENT_SUCCESS"}
PENDING_CODES = {"PAYMENT_PENDING", "PAYMENT_INITIATED"}

APPLIED = "applied"
DUPLICATE = "duplicate"
CONFLICT = "conflict"
STALE = "stale"
ORPHAN = "orphan"


@dataclass(frozen=True)
class ReconcileResult:
    outcome: str
    order_id: str
    payment_status: str
    order: object = None


def map_result_code(code) -> str:
    """Provider code -> payment status. Unknown codes fail closed."""
    code = str(code or "").strip().upper()
    if code in SUCCESS_CODES:
        return "completed"
    if code in PENDING_CODES:
        return "pending"
    return "failed"


def _audit(notification: Notification, status: str, kind: str) -> Payment:
    return Payment.objects.create(
        order_id=notification.order_id,
        status=status,
        kind=kind,
        channel=notification.channel,
        provider_code=notification.code[:64],
        provider_txn_id=notification.provider_txn_id,
        payload=notification.payload,
    )


def _check_amount(notification: Notification, order) -> None:
    # the stored amount stays authoritative; a mismatch is only reported
    if order is not None and notification.amount is not None and notification.amount != order.amount:
        logger.warning("Amount mismatch on %s notification for order=%s: stored=%s reported=%s",
                       notification.channel, order.pk, order.amount, notification.amount)


def reconcile(notification: Notification) -> ReconcileResult:
    status = map_result_code(notification.code)
    oid = notification.order_id

    try:
        with transaction.atomic():
            updated = store.apply_payment_status(
                oid, status,
                transaction_id=notification.provider_txn_id,
                upi_reference=notification.provider_reference,
            )
            if updated:
                _audit(notification, status, "transition")
    except DatabaseError as e:
        logger.exception("Reconciliation write failed for order=%s via %s", oid, notification.channel)
        raise PersistenceFailure(f"Could not persist payment state for order {oid}") from e

    if updated:
        logger.info("Order %s payment -> %s via %s (code=%s)", oid, status, notification.channel, notification.code)
        order = store.get_order(oid)
        _check_amount(notification, order)
        return ReconcileResult(APPLIED, oid, status, order)

    order = store.get_order(oid)
    if order is None:
        logger.warning("Orphan %s notification for unknown order=%s code=%s",
                       notification.channel, oid, notification.code)
        orphan_notification.send(sender=Notification, notification=notification)
        return ReconcileResult(ORPHAN, oid, status)

    _check_amount(notification, order)
    current = order.payment_status
    if not order.is_settled and status != "pending":
        # moved back to pending between the update and this read
        raise PersistenceFailure(f"Order {oid} changed while reconciling; retry")

    if current == status:
        try:
            _audit(notification, status, "duplicate")
        except DatabaseError as e:
            logger.exception("Audit insert failed for duplicate on order=%s", oid)
            raise PersistenceFailure(f"Could not record duplicate notification for order {oid}") from e
        logger.info("Duplicate %s notification for order=%s (%s)", notification.channel, oid, status)
        return ReconcileResult(DUPLICATE, oid, status, order)

    # A pending notice behind a terminal state is an out-of-order delivery,
    # not a disagreement: it is logged as stale and raises no conflict event.
    if status == "pending":
        logger.info("Stale pending %s notification for order=%s already %s", notification.channel, oid, current)
        return ReconcileResult(STALE, oid, status, order)

    logger.error("Conflicting %s notification for order=%s: stored=%s incoming=%s code=%s",
                 notification.channel, oid, current, status, notification.code)
    conflicting_notification.send(
        sender=Notification, notification=notification, order=order, attempted_status=status,
    )
    return ReconcileResult(CONFLICT, oid, status, order)
