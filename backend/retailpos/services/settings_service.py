# Overview: Settings singleton access and invoice-number allocation.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import AppSettings
from ..validation import ValidationError, optional_text, to_int
from .concurrency import lock_for_update

SETTINGS_MUTABLE_FIELDS = ("business_name", "currency", "invoice_prefix", "next_invoice_sequence")


def get_settings(*, lock: bool = False) -> AppSettings:
    """
    Load the settings singleton, creating it on first use.

    Does not commit; a newly created row is flushed into the caller's
    transaction.
    """
    q = db.session.query(AppSettings).filter_by(id=AppSettings.SINGLETON_ID)
    if lock:
        q = lock_for_update(q)
    settings = q.first()
    if settings is None:
        settings = AppSettings(
            id=AppSettings.SINGLETON_ID,
            invoice_prefix=current_app.config.get("INVOICE_PREFIX", "INV"),
            next_invoice_sequence=1,
        )
        db.session.add(settings)
        db.session.flush()
    return settings


def format_invoice_number(prefix: str, sequence: int) -> str:
    pad = current_app.config.get("INVOICE_SEQUENCE_PAD", 6)
    return f"{prefix}-{sequence:0{pad}d}"


def allocate_invoice_number(settings: AppSettings) -> str:
    """
    Read-then-increment the invoice counter.

    Must be called inside the same transaction that writes the invoice.
    The version_id on AppSettings turns a concurrent allocation into a
    StaleDataError at flush, and the transaction layer retries from the top,
    so a number is never handed out twice.
    """
    sequence = settings.next_invoice_sequence or 1
    settings.next_invoice_sequence = sequence + 1
    return format_invoice_number(settings.invoice_prefix, sequence)


def update_settings(data: dict) -> AppSettings:
    settings = get_settings()

    if "business_name" in data:
        name = optional_text(data.get("business_name"), "business_name")
        if not name:
            raise ValidationError("business_name is required")
        settings.business_name = name
    if "currency" in data:
        currency = optional_text(data.get("currency"), "currency", max_length=8)
        if not currency:
            raise ValidationError("currency is required")
        settings.currency = currency.upper()
    if "invoice_prefix" in data:
        prefix = optional_text(data.get("invoice_prefix"), "invoice_prefix", max_length=16)
        if not prefix or "-" in prefix:
            raise ValidationError("invoice_prefix is required and cannot contain '-'")
        settings.invoice_prefix = prefix
    if "next_invoice_sequence" in data:
        # Moving the counter backwards would reissue numbers
        sequence = to_int(data.get("next_invoice_sequence"), "next_invoice_sequence")
        if sequence < settings.next_invoice_sequence:
            raise ValidationError(
                "next_invoice_sequence cannot move backwards",
                details={"current": settings.next_invoice_sequence},
            )
        settings.next_invoice_sequence = sequence

    db.session.commit()
    return settings
