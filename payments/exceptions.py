class PaymentError(Exception):
    pass


class GatewayError(PaymentError):
    pass


class GatewayUnavailable(GatewayError):
    """Network failure or timeout talking to the provider."""


class GatewayRejected(GatewayError):
    """The provider answered with a non-success payload."""

    def __init__(self, message: str, payload: dict | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}
        self.status_code = status_code


class InvalidSignature(PaymentError):
    pass


class PersistenceFailure(PaymentError):
    """Order update and audit insert could not be committed together."""


class MalformedNotification(PaymentError):
    """Notification body lacks the fields needed to correlate it to an order."""
