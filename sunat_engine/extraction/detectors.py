"""Line detectors for comprobante fields.

Each detector is a pure function ``(context, index) -> FieldUpdate | None``
that looks at the line at ``index`` (and its neighbours) and proposes values
for one or more fields. Detectors never raise; no match means ``None``.
"""

import re
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from sunat_engine.extraction.parsing import find_amount, parse_date
from sunat_engine.extraction.schema import CurrencyCode, DocumentType

FieldUpdate = dict[str, Any]

LOOKAHEAD_LINES = 10
MAX_NAME_CONTEXT_LINES = 3
MIN_NAME_LENGTH = 6

TAX_ID_PATTERN = re.compile(r"\b(?:10|20)\d{9}\b")
NATIONAL_ID_PATTERN = re.compile(r"\b\d{8}\b")
ELEVEN_DIGITS = re.compile(r"\d{11}")

SERIES_WITH_LETTER = re.compile(
    r"\b([FBTE](?:\d{3}|[A-Z]\d{2}))\s?-\s?(\d{1,8})\b|\b([FBTE]\d{3})\s(\d{5,8})\b",
    re.IGNORECASE,
)
SERIES_DIGITS_ONLY = re.compile(r"\b(\d{4})-(\d{8})\b")

LEGAL_SUFFIX_KEYWORDS = ("s.a.", "s.r.l", "e.i.r.l", "s.a.c")
LEGAL_NAME = re.compile(
    r"([A-ZÁÉÍÓÚÑ][A-ZÁÉÍÓÚÑ&\s]{2,}(?:S\.A\.C|E\.I\.R\.L|S\.R\.L|S\.A\.)\.?)",
    re.IGNORECASE,
)
ADDRESS_KEYWORDS = re.compile(r"\b(?:calle|av\.|avenida|jr\.|jir[oó]n|psje\.?|pasaje)", re.IGNORECASE)
DATE_KEYWORDS = ("fecha", "emisión", "emision", "fec.")
TOTAL_KEYWORD = re.compile(r"(?<!sub)(?<!sub )\btotal\b", re.IGNORECASE)
TOTAL_SECONDARY = re.compile(r"\bimporte\s+total\b", re.IGNORECASE)
SUBTOTAL_KEYWORDS = re.compile(
    r"\bop\.?\s*gravad|\boperaci[oó]n(?:es)?\s+gravad|\bvalor\s+(?:de\s+)?venta"
    r"|\bbase\s+imponible|\bsub\s*[.\-]?\s*total",
    re.IGNORECASE,
)
TAX_KEYWORD = re.compile(r"\bi\.?\s?g\.?\s?v\b", re.IGNORECASE)
TAX_RATE = re.compile(r"(\d{1,2})\s*%")
COUNTERPARTY_KEYWORDS = ("cliente", "señor", "senor", "adquiriente", "adquirente")

PEN_MARKERS = re.compile(r"S/|\bPEN\b|\bsoles?\b", re.IGNORECASE)
USD_MARKERS = re.compile(r"\$|\bUSD\b|\bd[oó]lares?\b", re.IGNORECASE)


@dataclass(frozen=True)
class DetectionContext:
    """Read-only view of the document shared by all detectors."""

    lines: tuple[str, ...]
    full_text: str
    document_type: DocumentType | None = None

    def window(self, index: int, size: int = LOOKAHEAD_LINES) -> str:
        """Join the line at ``index`` with the following ``size`` lines."""
        return " ".join(self.lines[index : index + size + 1])


@dataclass(frozen=True)
class Detector:
    """A named detector and the fields that switch it off once set."""

    name: str
    guards: tuple[str, ...]
    detect: Callable[[DetectionContext, int], FieldUpdate | None]


def _strip_accents(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in normalized if not unicodedata.combining(ch))


def detect_document_type(full_text: str) -> DocumentType | None:
    """Infer the document type from its title keywords.

    Notes are checked first because they usually quote the invoice they amend.
    """
    upper = _strip_accents(full_text.upper())
    if "NOTA DE CREDITO" in upper:
        return DocumentType.CREDIT_NOTE
    if "NOTA DE DEBITO" in upper:
        return DocumentType.DEBIT_NOTE
    if "BOLETA" in upper:
        return DocumentType.RECEIPT
    if "FACTURA" in upper:
        return DocumentType.INVOICE
    return None


def document_type_from_series(series_number: str | None) -> DocumentType | None:
    """Infer the document type from the series letter (F=invoice, B=receipt)."""
    if not series_number:
        return None
    prefix = series_number[:1].upper()
    if prefix == "F":
        return DocumentType.INVOICE
    if prefix == "B":
        return DocumentType.RECEIPT
    return None


def detect_currency(full_text: str, default: CurrencyCode) -> CurrencyCode:
    if PEN_MARKERS.search(full_text):
        return CurrencyCode.PEN
    if USD_MARKERS.search(full_text):
        return CurrencyCode.USD
    return default


def detect_tax_id(ctx: DetectionContext, index: int) -> FieldUpdate | None:
    match = TAX_ID_PATTERN.search(ctx.lines[index])
    if match:
        return {"issuer_tax_id": match.group(0)}
    return None


def correct_series_prefix(series: str, document_type: DocumentType | None) -> str:
    """Fix the common OCR confusion of a leading "B"/"F" read as "8"."""
    if not series.startswith("8"):
        return series
    if document_type is DocumentType.RECEIPT:
        return "B" + series[1:]
    if document_type is DocumentType.INVOICE:
        return "F" + series[1:]
    return series


def detect_series_number(ctx: DetectionContext, index: int) -> FieldUpdate | None:
    line = ctx.lines[index]

    match = SERIES_WITH_LETTER.search(line)
    if match:
        series = match.group(1) or match.group(3)
        number = match.group(2) or match.group(4)
        return {"document_series_number": f"{series.upper()}-{number}"}

    match = SERIES_DIGITS_ONLY.search(line)
    if match:
        series = correct_series_prefix(match.group(1), ctx.document_type)
        return {"document_series_number": f"{series}-{match.group(2)}"}

    return None


def detect_issuer_name(ctx: DetectionContext, index: int) -> FieldUpdate | None:
    line = ctx.lines[index]
    if not any(keyword in line.lower() for keyword in LEGAL_SUFFIX_KEYWORDS):
        return None

    start = max(0, index - MAX_NAME_CONTEXT_LINES)
    context = " ".join(ctx.lines[start : index + 1])
    match = LEGAL_NAME.search(context)
    if not match:
        return None

    name = " ".join(match.group(1).split())
    if len(name) < MIN_NAME_LENGTH:
        return None
    return {"issuer_name": name}


def detect_address(ctx: DetectionContext, index: int) -> FieldUpdate | None:
    line = ctx.lines[index]
    if not ADDRESS_KEYWORDS.search(line):
        return None

    address = line
    if index + 1 < len(ctx.lines):
        next_line = ctx.lines[index + 1]
        if not ELEVEN_DIGITS.search(next_line):
            address = f"{line} {next_line}"
    return {"issuer_address": address}


def detect_issue_date(ctx: DetectionContext, index: int) -> FieldUpdate | None:
    line = ctx.lines[index]
    lower = line.lower()
    has_context = any(keyword in lower for keyword in DATE_KEYWORDS)
    if not has_context and index > 0:
        has_context = "fecha" in ctx.lines[index - 1].lower()
    if not has_context:
        return None

    parsed = parse_date(line)
    if parsed is None:
        return None
    return {"issue_date": parsed}


def detect_total(ctx: DetectionContext, index: int) -> FieldUpdate | None:
    """Detect "TOTAL A PAGAR", the strongest total anchor.

    "total" must be on the current line; "pagar" may be on any of the next
    ten lines since OCR often breaks the label.
    """
    line = ctx.lines[index]
    window = ctx.window(index)

    if SUBTOTAL_KEYWORDS.search(line):
        return None

    if TOTAL_KEYWORD.search(line) and "pagar" in window.lower():
        amount = find_amount(window)
        if amount is not None:
            return {"total_amount": amount}

    if TOTAL_SECONDARY.search(line):
        amount = find_amount(window)
        if amount is not None:
            return {"total_amount": amount}

    return None


def detect_subtotal(ctx: DetectionContext, index: int) -> FieldUpdate | None:
    if not SUBTOTAL_KEYWORDS.search(ctx.lines[index]):
        return None
    amount = find_amount(ctx.window(index))
    if amount is None:
        return None
    return {"subtotal": amount}


def detect_tax(ctx: DetectionContext, index: int) -> FieldUpdate | None:
    line = ctx.lines[index]
    if not TAX_KEYWORD.search(line):
        return None

    amount = find_amount(ctx.window(index))
    if amount is None:
        return None

    update: FieldUpdate = {"tax_amount": amount}
    rate = TAX_RATE.search(line) or TAX_RATE.search(ctx.window(index, 1))
    if rate:
        update["tax_rate_percent"] = int(rate.group(1))
    return update


def detect_counterparty(ctx: DetectionContext, index: int) -> FieldUpdate | None:
    lower = ctx.lines[index].lower()
    if not any(keyword in lower for keyword in COUNTERPARTY_KEYWORDS):
        return None
    if index + 1 >= len(ctx.lines):
        return None

    next_line = ctx.lines[index + 1]
    tax_id = TAX_ID_PATTERN.search(next_line)
    if tax_id:
        return {"counterparty_tax_id": tax_id.group(0)}
    national_id = NATIONAL_ID_PATTERN.search(next_line)
    if national_id:
        return {"counterparty_national_id": national_id.group(0)}
    return None


# Evaluation order within a line. Total runs before subtotal and tax so the
# strongest anchor claims its amount first.
LINE_DETECTORS: tuple[Detector, ...] = (
    Detector("tax_id", ("issuer_tax_id",), detect_tax_id),
    Detector("series_number", ("document_series_number",), detect_series_number),
    Detector("issuer_name", ("issuer_name",), detect_issuer_name),
    Detector("address", ("issuer_address",), detect_address),
    Detector("issue_date", ("issue_date",), detect_issue_date),
    Detector("total", ("total_amount",), detect_total),
    Detector("subtotal", ("subtotal",), detect_subtotal),
    Detector("tax", ("tax_amount",), detect_tax),
    Detector(
        "counterparty",
        ("counterparty_tax_id", "counterparty_national_id"),
        detect_counterparty,
    ),
)
