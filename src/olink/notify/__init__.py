from __future__ import annotations

from .email import EmailNotifier, Notifier, NullNotifier, send_email

__all__ = [
    "EmailNotifier",
    "Notifier",
    "NullNotifier",
    "send_email",
]
