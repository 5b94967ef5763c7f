"""Order settlement core: reconciles payment-gateway notifications with order state."""

__version__ = "0.1.0"
