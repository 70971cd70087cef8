import enum


class SettlementOutcome(str, enum.Enum):
    """Result of checking a payment (order or top-up) against the gateway."""

    PAID = "paid"                        # settled just now by this call
    ALREADY_PAID = "already_paid"        # settled earlier (other check, webhook, reconcile)
    NOT_SETTLED = "not_settled"          # gateway still pending
    CANCELED = "canceled"                # gateway canceled the payment
    KEY_UNAVAILABLE = "key_unavailable"  # money captured, no free key left
