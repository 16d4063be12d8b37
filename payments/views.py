import json, logging
from urllib.parse import quote

from django.conf import settings
from django.http import JsonResponse
from django.shortcuts import redirect, render
from django.urls import reverse
from django.utils import timezone
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from orders import store
from .auth import admin_required
from .exceptions import (
    GatewayRejected, GatewayUnavailable, InvalidSignature, MalformedNotification, PersistenceFailure,
)
from .integrations.phonepe import GatewayConfig, PayerContact, get_client
from .notifications import parse_callback, parse_redirect, signed_part
from .reconciliation import map_result_code, reconcile
from .utils import validate_pay_request

logger = logging.getLogger(__name__)


def _json_body(request):
    try: return json.loads(request.body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError): return None


def _error_page(request, title, message, status, **extra):
    ctx = {"title": title, "message": message, **extra}
    return render(request, "payments/error.html", ctx, status=status)


@csrf_exempt
@require_POST
def pay_view(request):
    """Checkout form post: ensure a pending order, then send the buyer to the pay page."""
    data = request.POST.dict() if request.POST else (_json_body(request) or {})
    cleaned, problems = validate_pay_request(data)
    if problems:
        logger.warning("Rejected /pay request, bad fields: %s", problems)
        return _error_page(request, "Payment Error", "Missing or invalid payment information", 400,
                           fields=problems)

    order, created = store.create_pending_order(
        order_id=cleaned["order_id"],
        amount=cleaned["amount"],
        user_id=cleaned["user_id"],
        customer_name=cleaned["customer_name"],
        customer_email=cleaned["customer_email"],
        customer_phone=cleaned["customer_phone"],
    )
    if not created and order.amount != cleaned["amount"]:
        logger.warning("Amount mismatch for order=%s: stored=%s requested=%s",
                       order.id, order.amount, cleaned["amount"])
        return _error_page(request, "Payment Error", "Amount does not match the order", 400,
                           order_id=order.id)
    if order.is_settled:
        return _error_page(request, "Payment Error", f"Order is already {order.payment_status}", 409,
                           order_id=order.id)

    contact = PayerContact(
        email=cleaned["customer_email"] or order.customer_email,
        phone=cleaned["customer_phone"] or order.customer_phone,
        name=cleaned["customer_name"] or order.customer_name,
    )
    try:
        pay_page = get_client().initiate(order.id, order.amount, contact)
    except GatewayRejected as e:
        return _error_page(request, "Payment Initialization Failed", e.message, 400, order_id=order.id)
    except GatewayUnavailable as e:
        logger.error("Gateway unavailable while initiating order=%s: %s", order.id, e)
        return _error_page(request, "Payment Error", "The payment service is unreachable. Please try again.",
                           502, order_id=order.id)

    return redirect(pay_page)


@csrf_exempt
@require_POST
def redirect_view(request):
    """Buyer lands here from the pay page. The page reflects this channel only."""
    try:
        notification = parse_redirect(request.POST.dict())
    except MalformedNotification as e:
        return _error_page(request, "Payment Error", str(e), 400)

    status = map_result_code(notification.code)
    if getattr(settings, "PHONEPE_REDIRECT_RECONCILES", False):
        try:
            reconcile(notification)
        except PersistenceFailure:
            # the signed callback still settles the order
            logger.warning("Redirect for order=%s not persisted", notification.order_id)

    ctx = {
        "order_id": notification.order_id,
        "provider_txn_id": notification.provider_txn_id,
        "status": status,
        "done_url": f"{reverse('payments:done')}?orderId={quote(notification.order_id)}",
    }
    return render(request, "payments/redirect.html", ctx)


@csrf_exempt
@require_POST
def callback_view(request):
    """Server-to-server notification. Authenticated by X-VERIFY before anything else."""
    raw = request.body.decode("utf-8", errors="replace")
    body = _json_body(request)
    try:
        get_client().verify_callback(signed_part(raw, body), request.headers.get("X-VERIFY", ""))
    except InvalidSignature as e:
        logger.warning("Rejected callback from %s: %s", request.META.get("REMOTE_ADDR", "?"), e)
        return JsonResponse({"ok": False, "error": "Invalid signature"}, status=401)

    try:
        notification = parse_callback(body)
    except MalformedNotification as e:
        logger.warning("Malformed callback: %s", e)
        return JsonResponse({"ok": False, "error": str(e)}, status=400)

    try:
        result = reconcile(notification)
    except PersistenceFailure as e:
        return JsonResponse({"ok": False, "error": str(e)}, status=500)

    return JsonResponse({"ok": True, "message": "Callback handled.", "outcome": result.outcome})


@require_GET
@admin_required
def status_view(request, txn_id: str):
    now = timezone.now().isoformat()
    try:
        data = get_client().poll_status(txn_id)
    except GatewayRejected as e:
        return JsonResponse({"success": False, "error": "Failed to fetch payment status",
                             "details": e.payload or e.message, "timestamp": now}, status=502)
    except GatewayUnavailable as e:
        return JsonResponse({"success": False, "error": "Failed to fetch payment status",
                             "details": str(e), "timestamp": now}, status=502)
    return JsonResponse({"success": True, "data": data, "timestamp": now})


@require_GET
def done_view(request):
    order_id = request.GET.get("orderId", "")
    frontend = getattr(settings, "FRONTEND_URL", "").rstrip("/")
    target = f"{frontend}/order/{quote(order_id)}" if order_id else f"{frontend}/"
    return render(request, "payments/done.html", {"order_id": order_id, "target": target})


@require_GET
def health_view(request):
    return JsonResponse({
        "status": "OK",
        "ts": timezone.now().isoformat(),
        "env": GatewayConfig.from_settings().public_summary(),
    })
