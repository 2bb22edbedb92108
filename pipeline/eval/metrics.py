"""Evaluation metrics for heuristic comprobante extraction.

Computes per-field precision, recall and F1 between gold and extracted
fields, using the usual information-extraction counting: a wrong value is
both a false positive and a false negative.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from sunat_engine.extraction.schema import ExtractedInvoiceFields

EVALUATED_FIELDS = (
    "issuer_tax_id",
    "issuer_name",
    "issuer_address",
    "document_series_number",
    "document_type",
    "issue_date",
    "subtotal",
    "tax_amount",
    "tax_rate_percent",
    "total_amount",
    "currency_code",
    "counterparty_tax_id",
    "counterparty_national_id",
)

AMOUNT_TOLERANCE = Decimal("0.01")


@dataclass
class FieldMetrics:
    """Metrics for a single field."""

    precision: float
    recall: float
    f1: float
    support: int  # Samples where the gold value is set


@dataclass
class EvaluationReport:
    """Complete evaluation report."""

    field_metrics: dict[str, FieldMetrics]
    macro_f1: float
    total_samples: int


def _normalize_text(value: str) -> str:
    return " ".join(value.strip().lower().split())


def calculate_field_match(expected: Any, predicted: Any) -> bool:
    """Check if an extracted value matches the gold value.

    Amounts match within one cent, enums by code, dates exactly, and strings
    case- and whitespace-insensitively.
    """
    if expected is None and predicted is None:
        return True
    if expected is None or predicted is None:
        return False

    if isinstance(expected, Enum):
        expected = expected.value
    if isinstance(predicted, Enum):
        predicted = predicted.value

    if isinstance(expected, int | Decimal) and isinstance(predicted, int | Decimal):
        return abs(Decimal(expected) - Decimal(predicted)) < AMOUNT_TOLERANCE

    if isinstance(expected, date) or isinstance(predicted, date):
        return str(expected) == str(predicted)

    if isinstance(expected, str) and isinstance(predicted, str):
        return _normalize_text(expected) == _normalize_text(predicted)

    return bool(expected == predicted)


def _field_metrics(
    field: str, expected: list[ExtractedInvoiceFields], predicted: list[ExtractedInvoiceFields]
) -> FieldMetrics:
    true_positives = false_positives = false_negatives = support = 0

    for exp, pred in zip(expected, predicted, strict=True):
        exp_value = getattr(exp, field)
        pred_value = getattr(pred, field)
        if exp_value is not None:
            support += 1

        if exp_value is not None and pred_value is not None:
            if calculate_field_match(exp_value, pred_value):
                true_positives += 1
            else:
                false_positives += 1
                false_negatives += 1
        elif exp_value is not None:
            false_negatives += 1
        elif pred_value is not None:
            false_positives += 1

    predicted_count = true_positives + false_positives
    gold_count = true_positives + false_negatives
    precision = true_positives / predicted_count if predicted_count else 0.0
    recall = true_positives / gold_count if gold_count else 0.0
    f1 = 2 * precision * recall / (precision + recall) if precision + recall else 0.0

    return FieldMetrics(precision=precision, recall=recall, f1=f1, support=support)


def evaluate_extraction(
    expected: list[ExtractedInvoiceFields],
    predicted: list[ExtractedInvoiceFields],
    fields: tuple[str, ...] = EVALUATED_FIELDS,
) -> EvaluationReport:
    """Evaluate extraction accuracy against gold data.

    Args:
        expected: Gold fields
        predicted: Extracted fields, aligned with ``expected``
        fields: Field names to score

    Returns:
        Evaluation report with per-field and macro-averaged metrics

    Raises:
        ValueError: If the lists differ in length
    """
    if len(expected) != len(predicted):
        raise ValueError("Expected and predicted lists must have same length")

    field_metrics = {field: _field_metrics(field, expected, predicted) for field in fields}
    macro_f1 = sum(m.f1 for m in field_metrics.values()) / len(field_metrics) if fields else 0.0

    return EvaluationReport(
        field_metrics=field_metrics,
        macro_f1=macro_f1,
        total_samples=len(expected),
    )
