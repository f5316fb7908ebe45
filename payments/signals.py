from django.dispatch import Signal


# Sent exactly once when a payment reaches ``confirmed``.
# Receivers get ``intent`` and ``verification`` keyword arguments.
payment_confirmed = Signal()

# Sent once when a payment reaches ``failed`` through verification.
payment_failed = Signal()
