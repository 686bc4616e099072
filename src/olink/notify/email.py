# src/olink/notify/email.py
from __future__ import annotations

import logging
import os
import smtplib
from datetime import datetime, timezone
from email.message import EmailMessage
from typing import Protocol

from olink.structured_logging import log_event
from olink.transfer.canon import format_amount
from olink.transfer.record import TransferRecord

log = logging.getLogger("olink.notify")


class Notifier(Protocol):
    def notify(self, record: TransferRecord, address: str) -> None: ...


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return v.strip() if isinstance(v, str) and v.strip() else default


def send_email(*, to_email: str, subject: str, body_text: str) -> None:
    """
    Minimal SMTP sender (stdlib only).

    Required env vars:
      OLINK_EMAIL_HOST
      OLINK_EMAIL_PORT
      OLINK_EMAIL_USER
      OLINK_EMAIL_PASS
      OLINK_EMAIL_FROM

    Port 587 uses STARTTLS; port 465 uses implicit TLS.
    """
    host = _env("OLINK_EMAIL_HOST")
    port = int(_env("OLINK_EMAIL_PORT", "587"))
    user = _env("OLINK_EMAIL_USER")
    password = _env("OLINK_EMAIL_PASS")
    sender = _env("OLINK_EMAIL_FROM", user)

    if not host or not user or not password or not sender:
        raise RuntimeError("email not configured: set OLINK_EMAIL_HOST/PORT/USER/PASS/FROM")

    msg = EmailMessage()
    msg["From"] = sender
    msg["To"] = to_email
    msg["Subject"] = subject
    msg.set_content(body_text)

    if port == 465:
        with smtplib.SMTP_SSL(host, port, timeout=20) as s:
            s.login(user, password)
            s.send_message(msg)
        return

    with smtplib.SMTP(host, port, timeout=20) as s:
        s.ehlo()
        s.starttls()
        s.ehlo()
        s.login(user, password)
        s.send_message(msg)


def render_subject(record: TransferRecord) -> str:
    return f"Transaction Notification - {record.status.value} transfer of {format_amount(record.amount)}"


def render_body(record: TransferRecord) -> str:
    ts = datetime.fromtimestamp(int(record.timestamp) / 1000.0, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
    lines = [
        "Transaction Notification",
        "",
        f"Transaction ID: {record.id}",
        f"Amount: {format_amount(record.amount)}",
        f"From: {record.sender}",
        f"To: {record.recipient}",
        f"Description: {record.description or ''}",
        f"Time: {ts}",
        f"Status: {record.status.value}",
        "",
        "This is an automated message. Please do not reply to this email.",
    ]
    return "\n".join(lines)


class EmailNotifier:
    """Best-effort SMTP notification of transfer outcomes."""

    def notify(self, record: TransferRecord, address: str) -> None:
        send_email(to_email=address, subject=render_subject(record), body_text=render_body(record))
        log_event(log, "notify_sent", id=record.id, status=record.status.value)


class NullNotifier:
    def notify(self, record: TransferRecord, address: str) -> None:
        return None
