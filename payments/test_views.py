from unittest.mock import patch

import jwt
from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.urls import reverse

from orders.models import Order
from .exceptions import GatewayRejected, GatewayUnavailable
from .models import Payment


class PayViewTests(TestCase):
    def _post(self, **overrides):
        data = {
            "orderId": "O1",
            "amount": "10800",
            "customerEmail": "buyer@example.com",
            "customerPhone": "9999999999",
            "customerName": "Asha",
        }
        data.update(overrides)
        return self.client.post(reverse("payments:pay"), data)

    def test_creates_pending_order_and_redirects_to_gateway(self):
        with patch("payments.views.get_client") as get_client:
            get_client.return_value.initiate.return_value = "https://pay.test/page"
            resp = self._post()

        self.assertEqual(resp.status_code, 302)
        self.assertEqual(resp["Location"], "https://pay.test/page")
        order = Order.objects.get(pk="O1")
        self.assertEqual((order.status, order.payment_status, order.amount), ("pending", "pending", 10800))
        args = get_client.return_value.initiate.call_args.args
        self.assertEqual(args[:2], ("O1", 10800))
        self.assertEqual(args[2].email, "buyer@example.com")

    def test_existing_checkout_order_is_used(self):
        Order.objects.create(id="O1", amount=10800, customer_email="early@example.com")
        with patch("payments.views.get_client") as get_client:
            get_client.return_value.initiate.return_value = "https://pay.test/page"
            resp = self._post(customerEmail="")

        self.assertEqual(resp.status_code, 302)
        self.assertEqual(get_client.return_value.initiate.call_args.args[2].email, "early@example.com")

    def test_missing_fields_rejected(self):
        with patch("payments.views.get_client") as get_client:
            resp = self.client.post(reverse("payments:pay"), {"customerEmail": "a@example.com"})

        self.assertEqual(resp.status_code, 400)
        self.assertContains(resp, "orderId", status_code=400)
        get_client.assert_not_called()
        self.assertFalse(Order.objects.exists())

    def test_non_positive_amount_rejected(self):
        resp = self._post(amount="-5")
        self.assertEqual(resp.status_code, 400)
        self.assertFalse(Order.objects.exists())

    def test_amount_mismatch_with_stored_order_rejected(self):
        Order.objects.create(id="O1", amount=500)
        with patch("payments.views.get_client") as get_client:
            resp = self._post(amount="10800")

        self.assertEqual(resp.status_code, 400)
        get_client.return_value.initiate.assert_not_called()
        self.assertEqual(Order.objects.get(pk="O1").amount, 500)

    def test_settled_order_cannot_be_paid_again(self):
        Order.objects.create(id="O1", amount=10800, payment_status="completed", status="confirmed")
        with patch("payments.views.get_client") as get_client:
            resp = self._post()

        self.assertEqual(resp.status_code, 409)
        get_client.return_value.initiate.assert_not_called()

    def test_gateway_rejection_shows_provider_message(self):
        with patch("payments.views.get_client") as get_client:
            get_client.return_value.initiate.side_effect = GatewayRejected("Invalid mobile number")
            resp = self._post()

        self.assertContains(resp, "Invalid mobile number", status_code=400)
        self.assertEqual(Order.objects.get(pk="O1").payment_status, "pending")

    def test_gateway_unavailable(self):
        with patch("payments.views.get_client") as get_client:
            get_client.return_value.initiate.side_effect = GatewayUnavailable("timed out")
            resp = self._post()

        self.assertEqual(resp.status_code, 502)
        self.assertEqual(Order.objects.get(pk="O1").payment_status, "pending")

    def test_json_body_accepted(self):
        with patch("payments.views.get_client") as get_client:
            get_client.return_value.initiate.return_value = "https://pay.test/page"
            resp = self.client.post(reverse("payments:pay"), data={"orderId": "O2", "amount": 100},
                                    content_type="application/json")
        self.assertEqual(resp.status_code, 302)
        self.assertTrue(Order.objects.filter(pk="O2").exists())


class RedirectViewTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(id="O1", amount=10000)

    def _post(self, code="PAYMENT_SUCCESS", **extra):
        data = {"code": code, "merchantId": "PGTESTPAYUAT", "transactionId": "O1",
                "amount": "10000", "providerReferenceId": "P1"}
        data.update(extra)
        return self.client.post(reverse("payments:redirect"), data)

    def test_renders_success_without_writing(self):
        resp = self._post()

        self.assertContains(resp, "Payment Successful")
        self.assertContains(resp, "/done?orderId=O1")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "pending")
        self.assertFalse(Payment.objects.exists())

    def test_renders_failure_for_unknown_code(self):
        resp = self._post(code="SOMETHING_ELSE")
        self.assertContains(resp, "Payment Failed")

    def test_page_escapes_provider_values(self):
        resp = self._post(providerReferenceId="<script>alert(1)</script>")
        self.assertNotContains(resp, "<script>alert(1)</script>")

    @override_settings(PHONEPE_REDIRECT_RECONCILES=True)
    def test_can_be_configured_to_reconcile(self):
        self._post()

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "completed")
        self.assertEqual(Payment.objects.get().channel, "redirect")

    def test_missing_transaction_id_is_bad_request(self):
        resp = self.client.post(reverse("payments:redirect"), {"code": "PAYMENT_SUCCESS"})
        self.assertEqual(resp.status_code, 400)


class StatusViewTests(TestCase):
    url = "/status/O1"

    def _token(self, role="admin", secret="test-jwt-secret-0123456789abcdef0123"):
        return jwt.encode({"sub": "u1", "role": role}, secret, algorithm="HS256")

    def test_anonymous_rejected(self):
        with patch("payments.views.get_client") as get_client:
            resp = self.client.get(self.url)
        self.assertEqual(resp.status_code, 401)
        get_client.assert_not_called()

    def test_staff_session_gets_raw_payload(self):
        staff = get_user_model().objects.create_user("ops", password="pw", is_staff=True)
        self.client.force_login(staff)
        payload = {"success": True, "code": "PAYMENT_SUCCESS", "data": {"merchantTransactionId": "O1"}}
        with patch("payments.views.get_client") as get_client:
            get_client.return_value.poll_status.return_value = payload
            resp = self.client.get(self.url)

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"], payload)
        get_client.return_value.poll_status.assert_called_once_with("O1")

    def test_non_staff_user_rejected(self):
        user = get_user_model().objects.create_user("buyer", password="pw")
        self.client.force_login(user)
        resp = self.client.get(self.url)
        self.assertEqual(resp.status_code, 401)

    def test_admin_bearer_token_accepted(self):
        with patch("payments.views.get_client") as get_client:
            get_client.return_value.poll_status.return_value = {"code": "PAYMENT_PENDING"}
            resp = self.client.get(self.url, HTTP_AUTHORIZATION=f"Bearer {self._token()}")
        self.assertEqual(resp.status_code, 200)

    def test_non_admin_or_forged_token_rejected(self):
        for token in (self._token(role="customer"), self._token(secret="other-secret-0123456789abcdef0123456")):
            resp = self.client.get(self.url, HTTP_AUTHORIZATION=f"Bearer {token}")
            self.assertEqual(resp.status_code, 401)

    def test_gateway_error_reported(self):
        with patch("payments.views.get_client") as get_client:
            get_client.return_value.poll_status.side_effect = GatewayUnavailable("timed out")
            resp = self.client.get(self.url, HTTP_AUTHORIZATION=f"Bearer {self._token()}")
        self.assertEqual(resp.status_code, 502)
        self.assertEqual(resp.json()["success"], False)


class DoneAndHealthTests(TestCase):
    def test_done_points_at_frontend_order_page(self):
        resp = self.client.get(reverse("payments:done"), {"orderId": "O1"})
        self.assertContains(resp, "https://frontend.test/order/O1")

    def test_health_hides_salt_key(self):
        resp = self.client.get(reverse("payments:health"))
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["env"]["merchantId"], "PGTESTPAYUAT")
        self.assertNotIn("test-salt-key", resp.content.decode())
