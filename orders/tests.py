from datetime import timedelta

from django.test import TestCase

from .models import Order
from . import store


class CreatePendingOrderTests(TestCase):
    def test_creates_pending_order(self):
        order, created = store.create_pending_order(order_id="O1", amount=10000, customer_email="a@example.com")
        self.assertTrue(created)
        self.assertEqual(order.status, "pending")
        self.assertEqual(order.payment_status, "pending")
        self.assertEqual(order.amount, 10000)

    def test_existing_order_is_returned_untouched(self):
        Order.objects.create(id="O1", amount=10000, customer_email="first@example.com")

        order, created = store.create_pending_order(order_id="O1", amount=5, customer_email="second@example.com")

        self.assertFalse(created)
        self.assertEqual(order.amount, 10000)
        self.assertEqual(order.customer_email, "first@example.com")


class ApplyPaymentStatusTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(id="O1", amount=10000)

    def test_completed_confirms_order(self):
        updated = store.apply_payment_status("O1", "completed", transaction_id="T1", upi_reference="UTR1")

        self.assertEqual(updated, 1)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "completed")
        self.assertEqual(self.order.status, "confirmed")
        self.assertEqual(self.order.transaction_id, "T1")
        self.assertEqual(self.order.upi_reference, "UTR1")

    def test_failed_fails_order(self):
        store.apply_payment_status("O1", "failed")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "failed")
        self.assertEqual(self.order.payment_status, "failed")

    def test_pending_keeps_order_status(self):
        Order.objects.filter(pk="O1").update(status="processing")

        updated = store.apply_payment_status("O1", "pending", transaction_id="T1")

        self.assertEqual(updated, 1)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, "processing")
        self.assertEqual(self.order.payment_status, "pending")

    def test_terminal_order_is_not_updated(self):
        store.apply_payment_status("O1", "completed", transaction_id="T1")

        updated = store.apply_payment_status("O1", "failed", transaction_id="T2")

        self.assertEqual(updated, 0)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "completed")
        self.assertEqual(self.order.transaction_id, "T1")

    def test_transaction_id_is_only_filled_once(self):
        store.apply_payment_status("O1", "pending", transaction_id="T1", upi_reference="UTR1")
        store.apply_payment_status("O1", "completed", transaction_id="T2", upi_reference="UTR2")

        self.order.refresh_from_db()
        self.assertEqual(self.order.transaction_id, "T1")
        self.assertEqual(self.order.upi_reference, "UTR1")
        self.assertEqual(self.order.payment_status, "completed")

    def test_pending_without_new_reference_updates_nothing(self):
        store.apply_payment_status("O1", "pending", transaction_id="T1")
        self.order.refresh_from_db()
        stamped = self.order.updated_at

        self.assertEqual(store.apply_payment_status("O1", "pending", transaction_id="T1"), 0)
        self.assertEqual(store.apply_payment_status("O1", "pending"), 0)

        self.order.refresh_from_db()
        self.assertEqual(self.order.updated_at, stamped)

    def test_missing_order_updates_nothing(self):
        self.assertEqual(store.apply_payment_status("NOPE", "completed"), 0)

    def test_bumps_updated_at_and_keeps_amount(self):
        before = self.order.updated_at - timedelta(hours=1)
        Order.objects.filter(pk="O1").update(updated_at=before)

        store.apply_payment_status("O1", "completed")
        self.order.refresh_from_db()
        self.assertGreater(self.order.updated_at, before)
        self.assertEqual(self.order.amount, 10000)
