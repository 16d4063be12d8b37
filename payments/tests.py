from unittest.mock import Mock, patch

from django.db import DatabaseError
from django.test import TestCase

from orders.models import Order
from .exceptions import PersistenceFailure
from .models import Payment
from .notifications import CALLBACK, REDIRECT, Notification
from .reconciliation import map_result_code, reconcile
from .signals import conflicting_notification, orphan_notification


def _notification(code, order_id="O1", channel=CALLBACK, txn="T1", **kw):
    return Notification(order_id=order_id, code=code, channel=channel, provider_txn_id=txn,
                        provider_reference=kw.pop("reference", txn), payload={"code": code}, **kw)


class MapResultCodeTests(TestCase):
    def test_success(self):
        self.assertEqual(map_result_code("PAYMENT_SUCCESS"), "completed")

    def test_pending_codes(self):
        self.assertEqual(map_result_code("PAYMENT_PENDING"), "pending")
        self.assertEqual(map_result_code("PAYMENT_INITIATED"), "pending")

    def test_unknown_codes_fail_closed(self):
        for code in ("WEIRD_CODE", "PAYMENT_ERROR", "", None, "payment_succes"):
            self.assertEqual(map_result_code(code), "failed", code)


class ReconcileTests(TestCase):
    def setUp(self):
        self.order = Order.objects.create(id="O1", amount=10000)

    def _listen(self, signal):
        handler = Mock()
        signal.connect(handler, weak=False)
        self.addCleanup(signal.disconnect, handler)
        return handler

    def test_success_confirms_pending_order(self):
        result = reconcile(_notification("PAYMENT_SUCCESS"))

        self.assertEqual(result.outcome, "applied")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "completed")
        self.assertEqual(self.order.status, "confirmed")
        self.assertEqual(self.order.transaction_id, "T1")
        audit = Payment.objects.get()
        self.assertEqual((audit.kind, audit.status, audit.channel), ("transition", "completed", "callback"))

    def test_duplicate_delivery_is_recorded_but_not_applied(self):
        first = reconcile(_notification("PAYMENT_SUCCESS"))
        second = reconcile(_notification("PAYMENT_SUCCESS"))

        self.assertEqual(first.outcome, "applied")
        self.assertEqual(second.outcome, "duplicate")
        self.assertEqual(Payment.objects.filter(kind="transition").count(), 1)
        self.assertEqual(Payment.objects.filter(kind="duplicate").count(), 1)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "completed")

    def test_repeated_deliveries_mutate_order_once(self):
        reconcile(_notification("PAYMENT_SUCCESS"))
        self.order.refresh_from_db()
        settled_at = self.order.updated_at

        for _ in range(3):
            reconcile(_notification("PAYMENT_SUCCESS"))

        self.order.refresh_from_db()
        self.assertEqual(self.order.updated_at, settled_at)
        self.assertEqual(Payment.objects.filter(kind="transition").count(), 1)

    def test_unknown_code_fails_order(self):
        result = reconcile(_notification("WEIRD_CODE"))

        self.assertEqual(result.payment_status, "failed")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "failed")
        self.assertEqual(self.order.status, "failed")

    def test_conflicting_notification_does_not_clobber(self):
        handler = self._listen(conflicting_notification)
        reconcile(_notification("PAYMENT_SUCCESS"))

        result = reconcile(_notification("PAYMENT_ERROR"))

        self.assertEqual(result.outcome, "conflict")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "completed")
        self.assertEqual(self.order.status, "confirmed")
        handler.assert_called_once()
        self.assertEqual(handler.call_args.kwargs["attempted_status"], "failed")
        self.assertEqual(Payment.objects.count(), 1)

    def test_failed_then_success_is_a_conflict(self):
        handler = self._listen(conflicting_notification)
        reconcile(_notification("PAYMENT_ERROR"))

        result = reconcile(_notification("PAYMENT_SUCCESS"))

        self.assertEqual(result.outcome, "conflict")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "failed")
        handler.assert_called_once()

    def test_orphan_notification_writes_nothing(self):
        handler = self._listen(orphan_notification)

        result = reconcile(_notification("PAYMENT_SUCCESS", order_id="MISSING"))

        self.assertEqual(result.outcome, "orphan")
        self.assertFalse(Order.objects.filter(pk="MISSING").exists())
        self.assertEqual(Payment.objects.count(), 0)
        handler.assert_called_once()

    def test_pending_then_success_ends_completed(self):
        first = reconcile(_notification("PAYMENT_PENDING"))
        second = reconcile(_notification("PAYMENT_SUCCESS"))

        self.assertEqual((first.outcome, second.outcome), ("applied", "applied"))
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "completed")

    def test_repeated_pending_notice_is_applied_once(self):
        outcomes = [reconcile(_notification("PAYMENT_PENDING")).outcome for _ in range(3)]

        self.assertEqual(outcomes, ["applied", "duplicate", "duplicate"])
        self.assertEqual(Payment.objects.filter(kind="transition").count(), 1)
        self.assertEqual(Payment.objects.filter(kind="duplicate").count(), 2)
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "pending")
        self.assertEqual(self.order.transaction_id, "T1")

    def test_pending_notice_without_references_writes_nothing(self):
        before = self.order.updated_at

        result = reconcile(_notification("PAYMENT_PENDING", txn=""))

        self.assertEqual(result.outcome, "duplicate")
        self.order.refresh_from_db()
        self.assertEqual(self.order.updated_at, before)
        self.assertFalse(Payment.objects.filter(kind="transition").exists())

    def test_success_then_late_pending_is_stale(self):
        handler = self._listen(conflicting_notification)
        reconcile(_notification("PAYMENT_SUCCESS"))

        result = reconcile(_notification("PAYMENT_PENDING"))

        self.assertEqual(result.outcome, "stale")
        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "completed")
        handler.assert_not_called()
        self.assertEqual(Payment.objects.count(), 1)

    def test_loser_of_concurrent_update_sees_reconciled_order(self):
        # another worker settled the order after this one was dispatched
        Order.objects.filter(pk="O1").update(payment_status="completed", status="confirmed")

        result = reconcile(_notification("PAYMENT_SUCCESS", txn="T2"))

        self.assertEqual(result.outcome, "duplicate")
        self.order.refresh_from_db()
        self.assertEqual(self.order.transaction_id, "")

    def test_amount_is_never_written(self):
        with self.assertLogs("payments.reconciliation", level="WARNING") as logs:
            reconcile(_notification("PAYMENT_SUCCESS", amount=1))
        self.assertIn("Amount mismatch", logs.output[0])
        self.order.refresh_from_db()
        self.assertEqual(self.order.amount, 10000)

    def test_audit_failure_rolls_back_order_update(self):
        with patch("payments.reconciliation.Payment.objects.create", side_effect=DatabaseError("boom")):
            with self.assertRaises(PersistenceFailure):
                reconcile(_notification("PAYMENT_SUCCESS"))

        self.order.refresh_from_db()
        self.assertEqual(self.order.payment_status, "pending")
        self.assertEqual(self.order.transaction_id, "")

    def test_redirect_channel_is_recorded(self):
        reconcile(_notification("PAYMENT_SUCCESS", channel=REDIRECT))
        self.assertEqual(Payment.objects.get().channel, "redirect")


class PaymentRecordTests(TestCase):
    def test_records_are_append_only(self):
        order = Order.objects.create(id="O1", amount=100)
        audit = Payment.objects.create(order=order, status="completed", channel="callback")

        audit.status = "failed"
        with self.assertRaises(ValueError):
            audit.save()
