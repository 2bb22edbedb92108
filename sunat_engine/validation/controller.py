"""Bounded perturbation retries against SUNAT's exact-match validation.

SUNAT only answers exact queries, while OCR routinely gets the last cent or
the issue date slightly wrong. The controller walks a fixed, ordered list of
candidate queries and stops at the first answer other than NOT_FOUND:

1. exact extracted values
2. amount +0.01, -0.01, +0.02, -0.02
3. date +1 day, -1 day
4. day and month swapped (only when both are <= 12 and differ)

The loop is driven by tenacity with no wait between attempts; credential
and request errors are not retried and propagate to the caller.
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import NamedTuple

from pydantic import BaseModel, Field
from tenacity import RetryCallState, Retrying, retry_if_result, stop_after_attempt

from sunat_engine.authority.client import SunatClient
from sunat_engine.authority.schema import ValidationOutcome, ValidationQuery, ValidationStatus
from sunat_engine.extraction.schema import ExtractedInvoiceFields
from sunat_engine.shared.config import Settings
from sunat_engine.shared.metrics import validation_attempts_total, validation_outcomes_total

logger = logging.getLogger(__name__)

AMOUNT_DELTAS = (Decimal("0.01"), Decimal("-0.01"), Decimal("0.02"), Decimal("-0.02"))
DAY_DELTAS = (1, -1)


class Candidate(NamedTuple):
    """A query to try and the perturbation that produced it (None for exact)."""

    perturbation: str | None
    query: ValidationQuery


class RetryAttempt(BaseModel):
    """Diagnostic record of one validation call."""

    sequence_number: int
    perturbation: str | None = None
    query: ValidationQuery
    outcome: ValidationOutcome


class RetryResult(BaseModel):
    """Final result of ``validate_with_retries``.

    Attributes:
        outcome: Accepted outcome, or None when validation was skipped
        attempts_used: Number of validation calls made
        perturbation: Perturbation that produced a match, if any
        attempts: Every attempt in order
        matched_query: Query that SUNAT recognized, if any
        skipped_reason: Why no query could be built
    """

    outcome: ValidationOutcome | None = None
    attempts_used: int = 0
    perturbation: str | None = None
    attempts: list[RetryAttempt] = Field(default_factory=list)
    matched_query: ValidationQuery | None = None
    skipped_reason: str | None = None

    @property
    def skipped(self) -> bool:
        return self.outcome is None

    def corrected_fields(self, fields: ExtractedInvoiceFields) -> ExtractedInvoiceFields | None:
        """Copy of ``fields`` with the amount and date SUNAT actually matched.

        Returns:
            Corrected copy, or None if the match did not come from a perturbation
        """
        if self.perturbation is None or self.matched_query is None:
            return None
        return fields.model_copy(
            update={
                "total_amount": self.matched_query.amount,
                "issue_date": self.matched_query.issue_date,
            }
        )


def _swap_day_month(value: date) -> date | None:
    if value.day > 12 or value.month > 12 or value.day == value.month:
        return None
    return value.replace(month=value.day, day=value.month)


def generate_candidates(query: ValidationQuery) -> list[Candidate]:
    """Build the ordered candidate list for a query.

    Amount candidates that would go negative are dropped.
    """
    candidates = [Candidate(None, query)]

    for delta in AMOUNT_DELTAS:
        amount = query.amount + delta
        if amount < 0:
            continue
        sign = "+" if delta > 0 else "-"
        candidates.append(
            Candidate(f"amount {sign}{abs(delta)}", query.model_copy(update={"amount": amount}))
        )

    for days in DAY_DELTAS:
        shifted = query.issue_date + timedelta(days=days)
        candidates.append(
            Candidate(f"date {days:+d} day", query.model_copy(update={"issue_date": shifted}))
        )

    swapped = _swap_day_month(query.issue_date)
    if swapped is not None:
        candidates.append(
            Candidate("date day/month swapped", query.model_copy(update={"issue_date": swapped}))
        )

    return candidates


def _is_not_found(attempt: RetryAttempt) -> bool:
    return attempt.outcome.status is ValidationStatus.NOT_FOUND


def _last_result(retry_state: RetryCallState) -> RetryAttempt:
    return retry_state.outcome.result()  # type: ignore[union-attr]


class ValidationController:
    """Runs the perturbation sequence against a SUNAT client."""

    def __init__(self, settings: Settings, client: SunatClient) -> None:
        """Initialize controller.

        Args:
            settings: Application settings (default attempt budget)
            client: SUNAT client used for every attempt
        """
        self.settings = settings
        self.client = client

    def validate_with_retries(
        self, fields: ExtractedInvoiceFields, max_attempts: int | None = None
    ) -> RetryResult:
        """Validate extracted fields, perturbing them until SUNAT recognizes one.

        Args:
            fields: Reconciled extraction result
            max_attempts: Attempt budget (defaults to settings.validation_max_attempts)

        Returns:
            RetryResult; skipped when required fields are missing

        Raises:
            CredentialError: If no SUNAT token can be acquired
            AuthorityRequestError: If a validation call fails
        """
        query = ValidationQuery.from_fields(fields)
        if query is None:
            missing = ValidationQuery.missing_fields(fields) or ["document_series_number"]
            reason = f"Insufficient data to validate: {', '.join(missing)}"
            logger.info(reason)
            return RetryResult(skipped_reason=reason)

        return self.validate_query(query, max_attempts)

    def validate_query(self, query: ValidationQuery, max_attempts: int | None = None) -> RetryResult:
        """Run the bounded candidate sequence for an already built query."""
        budget = max_attempts if max_attempts is not None else self.settings.validation_max_attempts
        if budget < 1:
            raise ValueError(f"max_attempts must be >= 1, got {budget}")

        candidates = generate_candidates(query)[:budget]
        pending = iter(candidates)
        attempts: list[RetryAttempt] = []

        def attempt() -> RetryAttempt:
            candidate = next(pending)
            validation_attempts_total.labels(perturbation=candidate.perturbation or "exact").inc()
            if candidate.perturbation:
                logger.info(f"Retrying with {candidate.perturbation}")
            outcome = self.client.validate(candidate.query)
            record = RetryAttempt(
                sequence_number=len(attempts) + 1,
                perturbation=candidate.perturbation,
                query=candidate.query,
                outcome=outcome,
            )
            attempts.append(record)
            return record

        retrying = Retrying(
            stop=stop_after_attempt(len(candidates)),
            retry=retry_if_result(_is_not_found),
            retry_error_callback=_last_result,
        )
        last = retrying(attempt)

        validation_outcomes_total.labels(status=last.outcome.status.value).inc()

        if _is_not_found(last):
            logger.info(f"Not found after {len(attempts)} attempts")
            return RetryResult(outcome=last.outcome, attempts_used=len(attempts), attempts=attempts)

        if last.perturbation:
            logger.info(f"Matched with {last.perturbation} on attempt {last.sequence_number}")
        return RetryResult(
            outcome=last.outcome,
            attempts_used=len(attempts),
            perturbation=last.perturbation,
            attempts=attempts,
            matched_query=last.query,
        )
