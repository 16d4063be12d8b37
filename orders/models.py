from django.db import models


class Order(models.Model):
    STATUS_CHOICES = [
        ("pending", "Pending"),
        ("confirmed", "Confirmed"),
        ("processing", "Processing"),
        ("shipped", "Shipped"),
        ("delivered", "Delivered"),
        ("cancelled", "Cancelled"),
        ("failed", "Failed"),
    ]
    PAYMENT_STATUS_CHOICES = [
        ("pending", "Pending"),
        ("completed", "Completed"),
        ("failed", "Failed"),
    ]
    TERMINAL_PAYMENT_STATUSES = ("completed", "failed")

    # Doubles as the gateway's merchant transaction id
    id = models.CharField(max_length=64, primary_key=True)
    user_id = models.CharField(max_length=64, blank=True, default="", db_index=True)

    amount = models.PositiveBigIntegerField(help_text="Minor currency units (paise)")
    currency = models.CharField(max_length=8, default="INR")

    customer_name = models.CharField(max_length=128, blank=True, default="")
    customer_email = models.EmailField(blank=True, default="")
    customer_phone = models.CharField(max_length=16, blank=True, default="")

    status = models.CharField(max_length=16, choices=STATUS_CHOICES, default="pending", db_index=True)
    payment_status = models.CharField(
        max_length=16, choices=PAYMENT_STATUS_CHOICES, default="pending", db_index=True
    )
    transaction_id = models.CharField(max_length=128, blank=True, default="")
    upi_reference = models.CharField(max_length=128, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ("-created_at",)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "completed"

    @property
    def is_settled(self) -> bool:
        return self.payment_status in self.TERMINAL_PAYMENT_STATUSES

    def __str__(self):
        return f"{self.id} ({self.status}/{self.payment_status})"
