# Overview: Scanner input validation and barcode decode/encode (PB|<category>|<sku> or bare SKU).

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..validation import BarcodeError, ProductNotFoundError
from .products_service import find_by_sku

PREFIX = "PB"
SEPARATOR = "|"
MIN_SCAN_LENGTH = 3


@dataclass(frozen=True)
class DecodedBarcode:
    sku: str
    category: Optional[str] = None


def validate_scan(raw: str | None) -> str:
    """
    Reject scanner output that should never reach pricing or checkout.

    Returns the trimmed scan. Raises BarcodeError with a message the till
    can show as-is.
    """
    if not raw or not isinstance(raw, str):
        raise BarcodeError("Empty scan. Please try again.")
    s = raw.strip()
    if not s:
        raise BarcodeError("Empty scan. Please try again.")
    if len(s) < MIN_SCAN_LENGTH:
        raise BarcodeError("Scan too short. Please rescan.", details={"scan": s})

    upper = s.upper()
    if "NOREAD" in upper:
        raise BarcodeError("Scanner couldn't read the code (NOREAD). Please rescan.", details={"scan": s})
    if "ERROR" in upper:
        raise BarcodeError(f"Scanner error: {s}", details={"scan": s})

    # Printable ASCII only; anything else means the scanner is in the wrong keyboard mode
    if any(ord(c) < 32 or ord(c) > 126 for c in s):
        raise BarcodeError("Unexpected characters in scan. Check scanner keyboard mode.")

    if " " in s and not s.startswith(PREFIX + SEPARATOR):
        raise BarcodeError("Unexpected spaces in scan. Please rescan.", details={"scan": s})

    return s


def decode_barcode(raw: str) -> DecodedBarcode:
    """
    Extract the SKU (and category code when present).

    Code 128 scanners on some keyboard layouts emit '=' for '-', so '=' is
    normalised first. Anything not in PB|CAT|SKU form is taken as a bare SKU.
    """
    s = validate_scan(raw)
    normalized = s.replace("=", "-").strip()

    parts = normalized.split(SEPARATOR)
    if len(parts) == 3 and parts[0] == PREFIX:
        _, category, sku = parts
        if sku:
            return DecodedBarcode(sku=sku, category=category or None)

    return DecodedBarcode(sku=normalized)


def encode_barcode(category_code: str | None, sku: str) -> str:
    if not sku:
        raise BarcodeError("SKU is required to encode a barcode")
    return SEPARATOR.join([PREFIX, (category_code or "").upper(), sku])


def lookup_scan(raw: str):
    """Resolve a scan to an active product or raise."""
    decoded = decode_barcode(raw)
    product = find_by_sku(decoded.sku)
    if product is None or not product.is_active:
        raise ProductNotFoundError(f"No product found for SKU {decoded.sku}", details={"sku": decoded.sku})
    return product
