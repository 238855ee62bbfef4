# Overview: Receipt tax breakdown and simple sales totals over committed invoices.

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from ..extensions import db
from ..models import Exchange, Invoice, Refund
from ..time_utils import normalize_datetime
from ..validation import ValidationError
from .tax import ZERO, as_decimal, round2, split_inclusive


def invoice_tax_breakdown(invoice: Invoice) -> dict:
    """
    Taxable value and tax per rate for a receipt.

    Each line's tax-inclusive amount after its own discount is split with
    split_inclusive(). Bill discounts are not spread here; the invoice's
    tax_total stays the figure of record.
    """
    rates: dict[Decimal, dict] = {}
    for line in invoice.lines:
        rate = as_decimal(line.tax_rate_pct)
        amount = as_decimal(line.unit_price) * line.quantity - as_decimal(line.discount_amount)
        split = split_inclusive(max(ZERO, amount), rate)
        bucket = rates.setdefault(rate, {"taxable": ZERO, "tax": ZERO, "lines": 0})
        bucket["taxable"] += split.base
        bucket["tax"] += split.gst
        bucket["lines"] += 1

    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "rates": [
            {
                "tax_rate_pct": f"{rate:.2f}",
                "taxable_value": f"{round2(bucket['taxable']):.2f}",
                "tax": f"{round2(bucket['tax']):.2f}",
                "lines": bucket["lines"],
            }
            for rate, bucket in sorted(rates.items())
        ],
        "tax_total": f"{round2(invoice.tax_total):.2f}",
    }


def sales_summary(start: datetime | str | None = None, end: datetime | str | None = None) -> dict:
    """Invoice and refund totals for [start, end)."""
    try:
        start_dt = normalize_datetime(start) if start else None
        end_dt = normalize_datetime(end) if end else None
    except ValueError:
        raise ValidationError("start and end must be ISO datetimes")
    if start_dt and end_dt and end_dt <= start_dt:
        raise ValidationError("end must be after start")

    q = db.session.query(Invoice).filter(Invoice.status != "void")
    if start_dt:
        q = q.filter(Invoice.issued_at >= start_dt)
    if end_dt:
        q = q.filter(Invoice.issued_at < end_dt)
    invoices = q.all()

    rq = db.session.query(Refund)
    if start_dt:
        rq = rq.filter(Refund.created_at >= start_dt)
    if end_dt:
        rq = rq.filter(Refund.created_at < end_dt)
    refunds = rq.all()

    xq = db.session.query(Exchange)
    if start_dt:
        xq = xq.filter(Exchange.created_at >= start_dt)
    if end_dt:
        xq = xq.filter(Exchange.created_at < end_dt)

    by_method: dict[str, Decimal] = {}
    for inv in invoices:
        by_method[inv.payment_method] = by_method.get(inv.payment_method, ZERO) + as_decimal(inv.grand_total)

    gross = sum((as_decimal(inv.grand_total) for inv in invoices), ZERO)
    refunded = sum((as_decimal(r.amount) for r in refunds), ZERO)
    return {
        "start": start_dt.isoformat() if start_dt else None,
        "end": end_dt.isoformat() if end_dt else None,
        "invoice_count": len(invoices),
        "exchange_count": xq.count(),
        "subtotal": f"{round2(sum((as_decimal(i.subtotal) for i in invoices), ZERO)):.2f}",
        "discount_total": f"{round2(sum((as_decimal(i.discount_total) for i in invoices), ZERO)):.2f}",
        "tax_total": f"{round2(sum((as_decimal(i.tax_total) for i in invoices), ZERO)):.2f}",
        "grand_total": f"{round2(gross):.2f}",
        "refund_total": f"{round2(refunded):.2f}",
        "net_total": f"{round2(gross - refunded):.2f}",
        "by_payment_method": {m: f"{round2(v):.2f}" for m, v in sorted(by_method.items())},
    }
