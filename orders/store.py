"""Order Store access for the payment flow.

``apply_payment_status`` is the only code path that writes ``payment_status``,
``transaction_id`` or ``upi_reference``. It is a single conditional UPDATE
guarded by ``payment_status = 'pending'``; callers read the affected-row count
instead of checking state beforehand.
"""
import logging

from django.db.models import Q, Value
from django.db.models.functions import Coalesce, NullIf
from django.utils import timezone

from .models import Order

logger = logging.getLogger(__name__)

# payment_status -> storefront status; "pending" leaves the order status alone
ORDER_STATUS_FOR_PAYMENT = {
    "completed": "confirmed",
    "failed": "failed",
}


def get_order(order_id: str):
    if not order_id:
        return None
    return Order.objects.filter(pk=order_id).first()


def create_pending_order(*, order_id: str, amount: int, currency: str = "INR", user_id: str = "",
                         customer_name: str = "", customer_email: str = "", customer_phone: str = ""):
    """Return ``(order, created)``; an existing order is returned untouched."""
    return Order.objects.get_or_create(
        pk=order_id,
        defaults={
            "amount": amount,
            "currency": currency or "INR",
            "user_id": user_id or "",
            "customer_name": customer_name or "",
            "customer_email": customer_email or "",
            "customer_phone": customer_phone or "",
            "status": "pending",
            "payment_status": "pending",
        },
    )


def _fill_once(field: str, value: str):
    # keep the stored value unless it is still empty
    return Coalesce(NullIf(field, Value("")), Value(value))


def apply_payment_status(order_id: str, payment_status: str, *,
                         transaction_id: str = "", upi_reference: str = "") -> int:
    """Move a pending order to ``payment_status``.

    Returns the number of rows updated: 1 when this call won the transition,
    0 when the order is missing or no longer pending. A ``pending`` status
    only writes when it fills an empty provider reference, so a repeated
    "still pending" notice leaves the row alone. ``amount`` is never part of
    the update.
    """
    qs = Order.objects.filter(pk=order_id, payment_status="pending")
    if payment_status == "pending":
        fills = Q()
        if transaction_id:
            fills |= Q(transaction_id="")
        if upi_reference:
            fills |= Q(upi_reference="")
        if not fills:
            return 0
        qs = qs.filter(fills)

    fields = {
        "payment_status": payment_status,
        "updated_at": timezone.now(),
    }
    order_status = ORDER_STATUS_FOR_PAYMENT.get(payment_status)
    if order_status:
        fields["status"] = order_status
    if transaction_id:
        fields["transaction_id"] = _fill_once("transaction_id", transaction_id)
    if upi_reference:
        fields["upi_reference"] = _fill_once("upi_reference", upi_reference)

    updated = qs.update(**fields)
    logger.debug("Conditional update order=%s -> %s affected=%s", order_id, payment_status, updated)
    return updated
