import base64, hashlib, json
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase
from django.urls import reverse

from orders.models import Order
from .models import Payment

SALT_KEY = "test-salt-key"


def _envelope(code, order_id="O1", txn="T100", amount=10000, utr="UTR100"):
    result = {
        "success": code == "PAYMENT_SUCCESS",
        "code": code,
        "message": "Your payment is successful.",
        "data": {
            "merchantId": "PGTESTPAYUAT",
            "merchantTransactionId": order_id,
            "transactionId": txn,
            "amount": amount,
            "state": "COMPLETED",
            "responseCode": "SUCCESS",
            "paymentInstrument": {"type": "UPI", "utr": utr},
        },
    }
    return {"response": base64.b64encode(json.dumps(result).encode()).decode()}


def _x_verify(signed_part, index="1"):
    return hashlib.sha256((signed_part + SALT_KEY).encode()).hexdigest() + "###" + index


class CallbackTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(id="O1", amount=10000)

    def _post(self, body, x_verify=None, sign=True):
        raw = json.dumps(body)
        headers = {}
        if x_verify is not None:
            headers["HTTP_X_VERIFY"] = x_verify
        elif sign:
            signed = body["response"] if "response" in body else raw
            headers["HTTP_X_VERIFY"] = _x_verify(signed)
        return self.client.post(reverse("payments:callback"), data=raw, content_type="application/json", **headers)

    def test_success_callback_confirms_order(self):
        resp = self._post(_envelope("PAYMENT_SUCCESS"))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["ok"], True)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "completed")
        self.assertEqual(self.order.status, "confirmed")
        self.assertEqual(self.order.transaction_id, "T100")
        self.assertEqual(self.order.upi_reference, "UTR100")

    def test_duplicate_callback_still_acknowledged(self):
        self._post(_envelope("PAYMENT_SUCCESS"))
        resp = self._post(_envelope("PAYMENT_SUCCESS"))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"ok": True, "message": "Callback handled.", "outcome": "duplicate"})
        self.assertEqual(Payment.objects.filter(kind="transition").count(), 1)

    def test_unknown_code_fails_order(self):
        self._post(_envelope("WEIRD_CODE"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "failed")
        self.assertEqual(self.order.status, "failed")

    def test_conflicting_callback_returns_ok_without_change(self):
        self._post(_envelope("PAYMENT_SUCCESS"))

        resp = self._post(_envelope("PAYMENT_ERROR"))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["outcome"], "conflict")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "completed")

    def test_missing_signature_rejected_before_lookup(self):
        with self.assertNumQueries(0):
            resp = self._post(_envelope("PAYMENT_SUCCESS"), sign=False)

        self.assertEqual(resp.status_code, 401)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "pending")

    def test_invalid_signature_rejected_before_lookup(self):
        body = _envelope("PAYMENT_SUCCESS")
        with patch("payments.views.reconcile") as reconcile, self.assertNumQueries(0):
            resp = self._post(body, x_verify=_x_verify(body["response"] + "x"))

        self.assertEqual(resp.status_code, 401)
        reconcile.assert_not_called()

    def test_signature_with_wrong_key_index_rejected(self):
        body = _envelope("PAYMENT_SUCCESS")
        resp = self._post(body, x_verify=_x_verify(body["response"], index="9"))
        self.assertEqual(resp.status_code, 401)

    def test_orphan_callback_acknowledged_without_writes(self):
        resp = self._post(_envelope("PAYMENT_SUCCESS", order_id="GHOST"))

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["ok"], True)
        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(Payment.objects.count(), 0)

    def test_callback_amount_does_not_change_order_amount(self):
        self._post(_envelope("PAYMENT_SUCCESS", amount=1))
        self.order.refresh_from_db()
        self.assertEqual(self.order.amount, 10000)
        self.assertEqual(self.order.payment_status, "completed")

    def test_flat_body_signed_over_raw_json(self):
        resp = self._post({"code": "PAYMENT_SUCCESS", "transactionId": "O1", "providerReferenceId": "P1"})

        self.assertEqual(resp.status_code, 200)
        self.order.refresh_from_db()
        self.assertEqual(self.order.transaction_id, "P1")

    def test_signed_body_without_order_reference_is_bad_request(self):
        resp = self._post({"code": "PAYMENT_SUCCESS"})
        self.assertEqual(resp.status_code, 400)

    def test_persistence_failure_returns_server_error(self):
        with patch("payments.reconciliation.Payment.objects.create", side_effect=DatabaseError("down")):
            resp = self._post(_envelope("PAYMENT_SUCCESS"))

        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["ok"], False)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "pending")

    def test_repeated_pending_callback_writes_once(self):
        outcomes = [self._post(_envelope("PAYMENT_PENDING")).json()["outcome"] for _ in range(3)]

        self.assertEqual(outcomes, ["applied", "duplicate", "duplicate"])
        self.assertEqual(Payment.objects.filter(kind="transition").count(), 1)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "pending")

    def test_signed_envelope_with_non_object_data_is_bad_request(self):
        for data in (["O1"], {"merchantTransactionId": "O1", "paymentInstrument": "UPI"}):
            result = {"success": True, "code": "PAYMENT_SUCCESS", "data": data}
            body = {"response": base64.b64encode(json.dumps(result).encode()).decode()}

            resp = self._post(body)

            self.assertEqual(resp.status_code, 400)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "pending")
