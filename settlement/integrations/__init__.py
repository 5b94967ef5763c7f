"""Inbound gateway integration."""
from .webhook_handler import WebhookHandler

__all__ = ["WebhookHandler"]
