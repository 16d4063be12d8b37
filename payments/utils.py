import re

REQUIRED_PAY_FIELDS = ("orderId", "amount")
ORDER_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


def validate_pay_request(data) -> tuple[dict, list]:
    """Return ``(cleaned, problems)`` for a /pay submission."""
    problems = [k for k in REQUIRED_PAY_FIELDS if not str(data.get(k) or "").strip()]
    if problems:
        return {}, problems

    order_id = str(data["orderId"]).strip()
    if not ORDER_ID_RE.match(order_id):
        problems.append("orderId")
    try:
        amount = int(str(data["amount"]).strip())
    except ValueError:
        amount = 0
    if amount <= 0:
        problems.append("amount")
    if problems:
        return {}, problems

    return {
        "order_id": order_id,
        "amount": amount,
        "customer_email": str(data.get("customerEmail") or "").strip(),
        "customer_phone": str(data.get("customerPhone") or "").strip(),
        "customer_name": str(data.get("customerName") or "").strip(),
        "user_id": str(data.get("userId") or "").strip(),
    }, []
