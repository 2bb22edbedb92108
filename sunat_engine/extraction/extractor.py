"""Heuristic field extraction from OCR output.

Runs every line detector over an immutable line array, keeping the first
value found for each field, then hands the partial result to the coherence
reconciler for the full-text anchor pass.
"""

import logging
from collections.abc import Sequence
from typing import Any

from sunat_engine.extraction.detectors import (
    LINE_DETECTORS,
    DetectionContext,
    detect_currency,
    detect_document_type,
    document_type_from_series,
)
from sunat_engine.extraction.reconciler import reconcile
from sunat_engine.extraction.schema import CurrencyCode, ExtractedInvoiceFields
from sunat_engine.extraction.segmenter import segment_lines
from sunat_engine.ocr.service import OCRResult
from sunat_engine.shared.config import Settings, get_settings
from sunat_engine.shared.metrics import extraction_requests_total

logger = logging.getLogger(__name__)


def scan_lines(ctx: DetectionContext) -> dict[str, Any]:
    """Run the line detectors and collect first-found values per field.

    Args:
        ctx: Lines and document-level context

    Returns:
        Mapping of field name to detected value (unset fields are absent)
    """
    found: dict[str, Any] = {}

    for index in range(len(ctx.lines)):
        for detector in LINE_DETECTORS:
            if any(found.get(guard) is not None for guard in detector.guards):
                continue

            update = detector.detect(ctx, index)
            if not update:
                continue

            for field, value in update.items():
                if found.get(field) is None:
                    found[field] = value
            logger.debug(f"Detector '{detector.name}' matched line {index}: {update}")

    return found


def extract_from_lines(
    lines: Sequence[str],
    full_text: str | None = None,
    settings: Settings | None = None,
) -> ExtractedInvoiceFields:
    """Extract invoice fields from already segmented lines.

    Args:
        lines: Text lines in reading order
        full_text: Raw OCR text for the anchor pass (defaults to the joined lines)
        settings: Application settings (defaults to environment settings)

    Returns:
        Reconciled fields; anything not found is left unset
    """
    settings = settings or get_settings()
    text = full_text if full_text is not None else "\n".join(lines)

    ctx = DetectionContext(
        lines=tuple(lines),
        full_text=text,
        document_type=detect_document_type(text),
    )
    found = scan_lines(ctx)

    found["document_type"] = ctx.document_type or document_type_from_series(
        found.get("document_series_number")
    )
    found["currency_code"] = detect_currency(text, CurrencyCode(settings.local_currency))

    extraction_requests_total.inc()
    fields = ExtractedInvoiceFields(**found)
    return reconcile(fields, text, settings)


def extract(ocr_result: OCRResult, settings: Settings | None = None) -> ExtractedInvoiceFields:
    """Extract invoice fields from an OCR result.

    Word boxes are segmented into lines when present; otherwise the raw text
    is split on newlines.

    Args:
        ocr_result: Output of the OCR service
        settings: Application settings (defaults to environment settings)

    Returns:
        Reconciled fields; anything not found is left unset
    """
    settings = settings or get_settings()

    if ocr_result.words:
        lines = segment_lines(ocr_result.words, settings.line_merge_threshold_px)
    else:
        lines = [line.strip() for line in ocr_result.text.splitlines() if line.strip()]

    full_text = ocr_result.text or "\n".join(lines)
    return extract_from_lines(lines, full_text, settings)
