from django.db import models


class Payment(models.Model):
    """Append-only audit row, one per accepted payment notification."""

    STATUS_CHOICES = [
        ("pending", "Pending"),
        ("completed", "Completed"),
        ("failed", "Failed"),
    ]
    KIND_CHOICES = [
        ("transition", "Transition"),
        ("duplicate", "Duplicate"),
    ]
    CHANNEL_CHOICES = [
        ("redirect", "Redirect"),
        ("callback", "Callback"),
        ("poll", "Status poll"),
    ]

    order = models.ForeignKey("orders.Order", on_delete=models.PROTECT, related_name="payments")
    status = models.CharField(max_length=16, choices=STATUS_CHOICES)
    kind = models.CharField(max_length=16, choices=KIND_CHOICES, default="transition")
    channel = models.CharField(max_length=16, choices=CHANNEL_CHOICES)

    provider_code = models.CharField(max_length=64, blank=True, default="")
    provider_txn_id = models.CharField(max_length=128, blank=True, default="", db_index=True)
    payload = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "payments"
        ordering = ("created_at",)

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ValueError("Payment records are append-only")
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.order_id} {self.kind} {self.status} via {self.channel}"
