import base64, hashlib, hmac, json, logging
from dataclasses import dataclass

import requests
from requests import RequestException
from django.conf import settings

from ..exceptions import GatewayRejected, GatewayUnavailable, InvalidSignature

logger = logging.getLogger(__name__)

PAY_PATH = "/pg/v1/pay"
STATUS_PATH = "/pg/v1/status/{merchant_id}/{txn_id}"


@dataclass(frozen=True)
class GatewayConfig:
    merchant_id: str
    salt_key: str
    salt_index: str
    base_url: str
    redirect_url: str = ""
    callback_url: str = ""
    timeout: float = 15.0
    status_timeout: float = 10.0

    @classmethod
    def from_settings(cls) -> "GatewayConfig":
        return cls(
            merchant_id=settings.PHONEPE_MERCHANT_ID,
            salt_key=settings.PHONEPE_SALT_KEY,
            salt_index=str(settings.PHONEPE_SALT_INDEX),
            base_url=settings.PHONEPE_BASE_URL.rstrip("/"),
            redirect_url=settings.PHONEPE_REDIRECT_URL,
            callback_url=settings.PHONEPE_CALLBACK_URL,
            timeout=float(getattr(settings, "PHONEPE_TIMEOUT", 15)),
            status_timeout=float(getattr(settings, "PHONEPE_STATUS_TIMEOUT", 10)),
        )

    def public_summary(self) -> dict:
        # never includes the salt key
        return {
            "merchantId": self.merchant_id,
            "saltIndex": self.salt_index,
            "baseUrl": self.base_url,
            "redirectUrl": self.redirect_url,
            "callbackUrl": self.callback_url,
        }


@dataclass(frozen=True)
class PayerContact:
    email: str = ""
    phone: str = ""
    name: str = ""


def _sha256_hex(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def _b64_json(payload: dict) -> str:
    return base64.b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8")).decode("ascii")


def _json_or_none(resp):
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


class PhonePeClient:
    """Signed calls to the PhonePe PG API.

    Every request carries ``X-VERIFY: sha256(<signed part> + salt_key)###salt_index``.
    Callers never see the salt key.
    """

    def __init__(self, config: GatewayConfig, session: requests.Session | None = None):
        self.config = config
        self.session = session or requests.Session()

    # ---------- signing ----------
    def sign(self, signed_part: str) -> str:
        return f"{_sha256_hex(signed_part + self.config.salt_key)}###{self.config.salt_index}"

    def _headers(self, x_verify: str) -> dict:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "X-VERIFY": x_verify,
            "X-MERCHANT-ID": self.config.merchant_id,
        }

    def build_pay_payload(self, order_id: str, amount: int, contact: PayerContact) -> dict:
        payload = {
            "merchantId": self.config.merchant_id,
            "merchantTransactionId": order_id,
            "merchantUserId": contact.email or f"user_{order_id}",
            "amount": int(amount),
            "redirectUrl": self.config.redirect_url,
            "redirectMode": "POST",
            "callbackUrl": self.config.callback_url,
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        if contact.phone:
            payload["mobileNumber"] = contact.phone
        return payload

    # ---------- API calls ----------
    def initiate(self, order_id: str, amount: int, contact: PayerContact) -> str:
        """Create a pay-page session and return the provider's hosted page URL."""
        payload = self.build_pay_payload(order_id, amount, contact)
        encoded = _b64_json(payload)
        x_verify = self.sign(encoded + PAY_PATH)
        url = self.config.base_url + PAY_PATH

        try:
            resp = self.session.post(url, json={"request": encoded}, headers=self._headers(x_verify),
                                     timeout=self.config.timeout)
        except RequestException as e:
            logger.warning("PhonePe pay request failed for order=%s: %s", order_id, e)
            raise GatewayUnavailable(f"Gateway request failed: {e}") from e

        data = _json_or_none(resp)
        if data is None:
            if resp.status_code >= 500:
                raise GatewayUnavailable(f"Gateway error {resp.status_code}")
            raise GatewayRejected(f"Unexpected gateway response (HTTP {resp.status_code})",
                                  {"raw": resp.text[:800]}, resp.status_code)

        redirect_url = (
            ((data.get("data") or {}).get("instrumentResponse") or {}).get("redirectInfo") or {}
        ).get("url")
        if resp.status_code == 200 and data.get("success") and redirect_url:
            logger.info("PhonePe pay session created for order=%s", order_id)
            return redirect_url

        message = data.get("message") or data.get("code") or "Invalid response"
        logger.error("PhonePe pay rejected for order=%s: status=%s code=%s message=%s",
                     order_id, resp.status_code, data.get("code"), message)
        raise GatewayRejected(message, data, resp.status_code)

    def poll_status(self, transaction_id: str) -> dict:
        """Fetch the provider's view of a transaction.

        Non-success result codes (``PAYMENT_PENDING``, ``PAYMENT_ERROR`` ...)
        are returned as data, not raised; only payloads without a ``code``
        are treated as rejections.
        """
        path = STATUS_PATH.format(merchant_id=self.config.merchant_id, txn_id=transaction_id)
        x_verify = self.sign(path)
        try:
            resp = self.session.get(self.config.base_url + path, headers=self._headers(x_verify),
                                    timeout=self.config.status_timeout)
        except RequestException as e:
            logger.warning("PhonePe status request failed for txn=%s: %s", transaction_id, e)
            raise GatewayUnavailable(f"Gateway request failed: {e}") from e

        data = _json_or_none(resp)
        if data is None:
            if resp.status_code >= 500:
                raise GatewayUnavailable(f"Gateway error {resp.status_code}")
            raise GatewayRejected(f"Unexpected gateway response (HTTP {resp.status_code})",
                                  {"raw": resp.text[:800]}, resp.status_code)
        if not data.get("code"):
            raise GatewayRejected(data.get("message") or f"Status check failed (HTTP {resp.status_code})",
                                  data, resp.status_code)
        return data

    # ---------- inbound ----------
    def verify_callback(self, signed_part: str, header: str) -> None:
        """Validate an inbound ``X-VERIFY`` header; raise ``InvalidSignature`` otherwise."""
        if not header or "###" not in header:
            raise InvalidSignature("Missing or malformed X-VERIFY header")
        received, _, key_index = header.strip().rpartition("###")
        if key_index != self.config.salt_index:
            raise InvalidSignature(f"Unexpected key index {key_index!r}")
        expected = _sha256_hex(signed_part + self.config.salt_key)
        if not hmac.compare_digest(expected, received.lower()):
            raise InvalidSignature("Signature mismatch")


def get_client() -> PhonePeClient:
    return PhonePeClient(GatewayConfig.from_settings())
