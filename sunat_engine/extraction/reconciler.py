"""Coherence reconciliation of extracted amounts.

A second pass over the full text for anchors that tolerate line-break noise
between label and number, followed by arithmetic fill-in and a consistency
check of subtotal + IGV against the total.
"""

import logging
import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sunat_engine.extraction.parsing import ANCHORED_AMOUNT, parse_amount
from sunat_engine.extraction.schema import ExtractedInvoiceFields
from sunat_engine.shared.config import Settings
from sunat_engine.shared.metrics import extraction_inconsistencies_total

logger = logging.getLogger(__name__)

# Up to 30 characters of noise (including newlines) between label and amount
_GAP = r"[\s\S]{0,30}?"

TOTAL_TO_PAY_ANCHOR = re.compile(r"TOTAL\s*A\s*PAGAR" + _GAP + ANCHORED_AMOUNT, re.IGNORECASE)
ALTERNATIVE_TOTAL_ANCHORS = tuple(
    re.compile(label + _GAP + ANCHORED_AMOUNT, re.IGNORECASE)
    for label in (r"MONTO\s*PAGADO", r"IMPORTE\s*TOTAL", r"TOTAL\s*NETO")
)
TAXABLE_BASE_ANCHOR = re.compile(
    r"(?:OP\.?\s*GRAVADAS?|OPERACI[OÓ]N(?:ES)?\s*GRAVADAS?|BASE\s*IMPONIBLE)" + _GAP + ANCHORED_AMOUNT,
    re.IGNORECASE,
)
TAX_WITH_RATE_ANCHOR = re.compile(
    r"I\.?\s?G\.?\s?V\.?\s*\(\s*(\d{1,2})\s*%\s*\)" + _GAP + ANCHORED_AMOUNT,
    re.IGNORECASE,
)


def _anchored_total(text: str) -> Decimal | None:
    match = TOTAL_TO_PAY_ANCHOR.search(text)
    if match:
        return parse_amount(match.group(1))
    for anchor in ALTERNATIVE_TOTAL_ANCHORS:
        match = anchor.search(text)
        if match:
            return parse_amount(match.group(1))
    return None


def apply_anchors(fields: ExtractedInvoiceFields, full_text: str) -> dict[str, Any]:
    """Collect overrides from explicit full-text anchors.

    Args:
        fields: Result of the line scan
        full_text: Raw document text

    Returns:
        Field overrides; anchors always outrank line-scan values
    """
    updates: dict[str, Any] = {}

    total = _anchored_total(full_text)
    if total is not None and total > 0:
        updates["total_amount"] = total

    match = TAXABLE_BASE_ANCHOR.search(full_text)
    if match:
        subtotal = parse_amount(match.group(1))
        if subtotal is not None and subtotal > 0:
            updates["subtotal"] = subtotal

    match = TAX_WITH_RATE_ANCHOR.search(full_text)
    if match:
        tax = parse_amount(match.group(2))
        if tax is not None and tax > 0:
            updates["tax_amount"] = tax
            updates["tax_rate_percent"] = int(match.group(1))

    if updates:
        logger.debug(f"Anchors overriding line-scan values: {updates}")
    return updates


def derive_missing_amount(
    subtotal: Decimal | None, tax: Decimal | None, total: Decimal | None
) -> dict[str, Decimal]:
    """Derive the single missing member of subtotal/tax/total.

    Nothing is derived when fewer than two are known or when the result
    would be negative.
    """
    if total is None and subtotal is not None and tax is not None:
        return {"total_amount": subtotal + tax}
    if subtotal is None and total is not None and tax is not None and total >= tax:
        return {"subtotal": total - tax}
    if tax is None and total is not None and subtotal is not None and total >= subtotal:
        return {"tax_amount": total - subtotal}
    return {}


def infer_tax_rate(
    subtotal: Decimal | None, tax: Decimal | None, valid_rates: list[int]
) -> int | None:
    """Infer the IGV rate from amounts, accepting only known rates."""
    if subtotal is None or tax is None or subtotal <= 0:
        return None
    rate = int((tax / subtotal * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if rate in valid_rates:
        return rate
    return None


def reconcile(
    fields: ExtractedInvoiceFields, full_text: str, settings: Settings
) -> ExtractedInvoiceFields:
    """Refine line-scan fields with anchors, arithmetic and a coherence check.

    Never raises; returns a new instance and leaves ``fields`` untouched.

    Args:
        fields: Result of the line scan
        full_text: Raw document text
        settings: Application settings (tolerance, valid rates, policy)

    Returns:
        Reconciled copy of the fields
    """
    result = fields.model_copy(update=apply_anchors(fields, full_text))

    derived = derive_missing_amount(result.subtotal, result.tax_amount, result.total_amount)
    if derived:
        logger.debug(f"Derived missing amount: {derived}")
        result = result.model_copy(update=derived)

    subtotal, tax, total = result.subtotal, result.tax_amount, result.total_amount
    if subtotal is not None and tax is not None and total is not None:
        gap = abs(subtotal + tax - total)
        if gap > settings.amount_tolerance:
            extraction_inconsistencies_total.inc()
            logger.warning(
                f"Amounts disagree: subtotal {subtotal} + IGV {tax} != total {total} "
                f"(gap {gap}); keeping total"
            )
            if settings.coherence_policy == "derive_tax_from_total" and total >= subtotal:
                result = result.model_copy(update={"tax_amount": total - subtotal})

    if result.tax_rate_percent is None:
        rate = infer_tax_rate(result.subtotal, result.tax_amount, settings.valid_tax_rates)
        if rate is not None:
            result = result.model_copy(update={"tax_rate_percent": rate})

    return result
