"""SecureTransfer: time-locked escrow payments with automated refunds."""

__version__ = "0.1.0"
