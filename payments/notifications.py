"""Normalise provider notifications from the redirect, callback and status poll."""
import base64, binascii, json
from dataclasses import dataclass, field

from .exceptions import MalformedNotification

REDIRECT = "redirect"
CALLBACK = "callback"
POLL = "poll"


@dataclass(frozen=True)
class Notification:
    order_id: str
    code: str
    channel: str
    provider_txn_id: str = ""
    provider_reference: str = ""
    amount: int | None = None
    payload: dict = field(default_factory=dict)


def _as_int(value):
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _require_order_id(order_id) -> str:
    order_id = str(order_id or "").strip()
    if not order_id:
        raise MalformedNotification("Notification carries no merchant transaction id")
    return order_id


def from_provider_result(result: dict, channel: str, order_id: str = "") -> Notification:
    """Build a notification from a decoded callback or a status-poll payload.

    Shape: ``{"success", "code", "data": {"merchantTransactionId",
    "transactionId", "amount", "paymentInstrument": {"utr", ...}}}``.
    """
    data = result.get("data") or {}
    if not isinstance(data, dict):
        raise MalformedNotification("Provider result data must be an object")
    instrument = data.get("paymentInstrument") or {}
    if not isinstance(instrument, dict):
        raise MalformedNotification("Payment instrument must be an object")
    txn_id = str(data.get("transactionId") or "")
    return Notification(
        order_id=_require_order_id(data.get("merchantTransactionId") or order_id),
        code=str(result.get("code") or ""),
        channel=channel,
        provider_txn_id=txn_id,
        provider_reference=str(instrument.get("utr") or data.get("providerReferenceId") or txn_id),
        amount=_as_int(data.get("amount")),
        payload=result,
    )


def parse_redirect(form: dict) -> Notification:
    """Browser POST after the pay page: ``code``, ``transactionId``, ``providerReferenceId``."""
    reference = str(form.get("providerReferenceId") or "")
    return Notification(
        order_id=_require_order_id(form.get("transactionId") or form.get("merchantTransactionId")),
        code=str(form.get("code") or ""),
        channel=REDIRECT,
        provider_txn_id=reference,
        provider_reference=reference,
        amount=_as_int(form.get("amount")),
        payload=dict(form),
    )


def decode_envelope(encoded: str) -> dict:
    try:
        decoded = json.loads(base64.b64decode(encoded, validate=True).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise MalformedNotification(f"Undecodable callback response: {e}") from e
    if not isinstance(decoded, dict):
        raise MalformedNotification("Callback response is not an object")
    return decoded


def signed_part(raw_body: str, body) -> str:
    """The string the provider hashed: the base64 ``response`` field, else the raw body."""
    if isinstance(body, dict) and isinstance(body.get("response"), str):
        return body["response"]
    return raw_body


def parse_callback(body) -> Notification:
    if not isinstance(body, dict):
        raise MalformedNotification("Callback body must be a JSON object")
    if isinstance(body.get("response"), str):
        return from_provider_result(decode_envelope(body["response"]), CALLBACK)

    reference = str(body.get("providerReferenceId") or "")
    return Notification(
        order_id=_require_order_id(body.get("transactionId") or body.get("merchantTransactionId")),
        code=str(body.get("code") or ""),
        channel=CALLBACK,
        provider_txn_id=reference,
        provider_reference=reference,
        amount=_as_int(body.get("amount")),
        payload=body,
    )
