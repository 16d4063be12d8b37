import time
from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from orders.models import Order
from payments.exceptions import GatewayError, MalformedNotification, PersistenceFailure
from payments.integrations.phonepe import get_client
from payments.notifications import POLL, from_provider_result
from payments.reconciliation import map_result_code, reconcile

NOT_STARTED_CODES = {"TRANSACTION_NOT_FOUND"}


def _started(data) -> bool:
    """True when the provider knows a transaction for this order."""
    if str(data.get("code") or "").upper() in NOT_STARTED_CODES:
        return False
    details = data.get("data")
    return isinstance(details, dict) and bool(details.get("merchantTransactionId"))


class Command(BaseCommand):
    help = "Poll PhonePe for pending orders and reconcile settled ones"

    def add_arguments(self, parser):
        parser.add_argument("--max", type=int, default=50)
        parser.add_argument("--sleep", type=float, default=0.5)
        parser.add_argument("--older-than-minutes", type=int, default=5)

    def handle(self, *args, **opts):
        cutoff = timezone.now() - timedelta(minutes=opts["older_than_minutes"])
        qs = Order.objects.filter(payment_status="pending", updated_at__lt=cutoff).order_by("updated_at")[:opts["max"]]
        orders = list(qs)

        if not orders:
            self.stdout.write(self.style.SUCCESS("No pending orders to reconcile."))
            return

        client = get_client()
        settled = 0
        for o in orders:
            try:
                data = client.poll_status(o.id)
                if not _started(data):
                    self.stdout.write(f"{o.id}: not started at gateway ({data.get('code')}), skipped")
                elif map_result_code(data.get("code")) == "pending":
                    self.stdout.write(f"{o.id}: still pending")
                else:
                    result = reconcile(from_provider_result(data, POLL))
                    settled += 1
                    self.stdout.write(self.style.SUCCESS(f"{o.id} -> {result.payment_status} ({result.outcome})"))
            except (GatewayError, MalformedNotification) as e:
                self.stdout.write(self.style.WARNING(f"{o.id}: {e}"))
            except PersistenceFailure as e:
                self.stdout.write(self.style.ERROR(f"{o.id}: {e}"))
            if opts["sleep"]:
                time.sleep(opts["sleep"])

        self.stdout.write(self.style.SUCCESS(f"Checked {len(orders)}, settled {settled} orders."))
