"""Unit tests for the perturbation retry controller."""

from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from sunat_engine.authority.errors import AuthorityRequestError, CredentialError
from sunat_engine.authority.schema import ValidationOutcome, ValidationQuery, ValidationStatus
from sunat_engine.extraction.schema import DocumentType, ExtractedInvoiceFields
from sunat_engine.shared.config import Settings
from sunat_engine.validation.controller import ValidationController, generate_candidates


class FakeSunatClient:
    """Answers VALID only for one exact (amount, date) pair."""

    def __init__(self, amount: Decimal, issue_date: date) -> None:
        self.amount = amount
        self.issue_date = issue_date
        self.queries: list[ValidationQuery] = []

    def validate(self, query: ValidationQuery) -> ValidationOutcome:
        self.queries.append(query)
        if query.amount == self.amount and query.issue_date == self.issue_date:
            return ValidationOutcome(status=ValidationStatus.VALID, counterparty_registry_status="ACTIVO")
        return ValidationOutcome(status=ValidationStatus.NOT_FOUND)


@pytest.fixture
def settings() -> Settings:
    """Create settings independent of the environment."""
    return Settings(_env_file=None)


@pytest.fixture
def fields() -> ExtractedInvoiceFields:
    """Create a fully populated factura."""
    return ExtractedInvoiceFields(
        issuer_tax_id="20123456789",
        document_type=DocumentType.INVOICE,
        document_series_number="F001-00012345",
        issue_date=date(2025, 3, 15),
        subtotal=Decimal("100.00"),
        tax_amount=Decimal("18.00"),
        total_amount=Decimal("118.00"),
    )


def make_query(amount: str = "118.00", issue_date: date = date(2025, 3, 15)) -> ValidationQuery:
    return ValidationQuery(
        issuer_tax_id="20123456789",
        document_type=DocumentType.INVOICE,
        series="F001",
        number="00012345",
        issue_date=issue_date,
        amount=Decimal(amount),
    )


class TestGenerateCandidates:
    """Test the ordered candidate list."""

    def test_order(self) -> None:
        """Should list exact, amounts, dates and then the swap."""
        candidates = generate_candidates(make_query(issue_date=date(2025, 3, 11)))

        assert [c.perturbation for c in candidates] == [
            None,
            "amount +0.01",
            "amount -0.01",
            "amount +0.02",
            "amount -0.02",
            "date +1 day",
            "date -1 day",
            "date day/month swapped",
        ]
        assert candidates[2].query.amount == Decimal("117.99")
        assert candidates[7].query.issue_date == date(2025, 11, 3)

    def test_no_swap_when_day_above_twelve(self) -> None:
        """Should skip the swap when the day cannot be a month."""
        candidates = generate_candidates(make_query(issue_date=date(2025, 3, 15)))

        assert len(candidates) == 7
        assert candidates[-1].perturbation == "date -1 day"

    def test_no_swap_when_day_equals_month(self) -> None:
        """Should skip the swap when it would not change the date."""
        candidates = generate_candidates(make_query(issue_date=date(2025, 4, 4)))

        assert "date day/month swapped" not in [c.perturbation for c in candidates]

    def test_negative_amounts_dropped(self) -> None:
        """Should not produce candidates below zero."""
        candidates = generate_candidates(make_query(amount="0.01"))

        amounts = [c.query.amount for c in candidates if c.perturbation and c.perturbation.startswith("amount")]
        assert amounts == [Decimal("0.02"), Decimal("0.00"), Decimal("0.03")]

    def test_date_shift_crosses_month(self) -> None:
        """Should shift across month boundaries."""
        candidates = generate_candidates(make_query(issue_date=date(2025, 2, 28)))

        by_name = {c.perturbation: c.query.issue_date for c in candidates}
        assert by_name["date +1 day"] == date(2025, 3, 1)
        assert by_name["date -1 day"] == date(2025, 2, 27)


class TestValidationController:
    """Test the bounded retry loop."""

    def test_exact_match_uses_one_attempt(self, settings: Settings, fields: ExtractedInvoiceFields) -> None:
        """Should stop at the first call when the extraction is exact."""
        client = FakeSunatClient(Decimal("118.00"), date(2025, 3, 15))
        controller = ValidationController(settings, client)

        result = controller.validate_with_retries(fields)

        assert result.outcome.status is ValidationStatus.VALID
        assert result.attempts_used == 1
        assert result.perturbation is None
        assert result.corrected_fields(fields) is None

    def test_match_on_minus_one_cent(self, settings: Settings, fields: ExtractedInvoiceFields) -> None:
        """Should succeed on attempt 3 when the real total is one cent lower."""
        client = FakeSunatClient(Decimal("117.99"), date(2025, 3, 15))
        controller = ValidationController(settings, client)

        result = controller.validate_with_retries(fields, max_attempts=3)

        assert result.outcome.status is ValidationStatus.VALID
        assert result.attempts_used == 3
        assert result.perturbation == "amount -0.01"
        assert [a.sequence_number for a in result.attempts] == [1, 2, 3]
        assert result.matched_query.amount == Decimal("117.99")

    def test_day_month_transposition(self, settings: Settings, fields: ExtractedInvoiceFields) -> None:
        """Should find the document via the swap as the last candidate."""
        misread = fields.model_copy(update={"issue_date": date(2024, 11, 3)})
        client = FakeSunatClient(Decimal("118.00"), date(2024, 3, 11))
        controller = ValidationController(settings, client)

        result = controller.validate_with_retries(misread, max_attempts=8)

        assert result.outcome.status is ValidationStatus.VALID
        assert result.attempts_used == 8
        assert result.perturbation == "date day/month swapped"

    def test_stops_after_budget(self, settings: Settings, fields: ExtractedInvoiceFields) -> None:
        """Should make exactly max_attempts calls and report NOT_FOUND."""
        client = FakeSunatClient(Decimal("999.99"), date(2025, 3, 15))
        controller = ValidationController(settings, client)

        result = controller.validate_with_retries(fields, max_attempts=5)

        assert result.outcome.status is ValidationStatus.NOT_FOUND
        assert result.attempts_used == 5
        assert len(client.queries) == 5
        assert result.perturbation is None
        assert result.matched_query is None

    def test_default_budget_from_settings(self, settings: Settings, fields: ExtractedInvoiceFields) -> None:
        """Should fall back to the configured attempt budget."""
        client = FakeSunatClient(Decimal("999.99"), date(2025, 3, 15))
        controller = ValidationController(settings, client)

        result = controller.validate_with_retries(fields)

        assert result.attempts_used == settings.validation_max_attempts

    def test_budget_larger_than_candidates(self, settings: Settings, fields: ExtractedInvoiceFields) -> None:
        """Should stop when the candidates run out."""
        client = FakeSunatClient(Decimal("999.99"), date(2025, 3, 15))
        controller = ValidationController(settings, client)

        result = controller.validate_with_retries(fields, max_attempts=50)

        assert result.attempts_used == 7

    def test_annulled_stops_retries(self, settings: Settings, fields: ExtractedInvoiceFields) -> None:
        """Should accept any answer other than NOT_FOUND."""
        client = MagicMock()
        client.validate.return_value = ValidationOutcome(status=ValidationStatus.ANNULLED)
        controller = ValidationController(settings, client)

        result = controller.validate_with_retries(fields, max_attempts=5)

        assert result.outcome.status is ValidationStatus.ANNULLED
        assert client.validate.call_count == 1

    def test_invalid_budget(self, settings: Settings, fields: ExtractedInvoiceFields) -> None:
        """Should reject a budget below one."""
        controller = ValidationController(settings, MagicMock())

        with pytest.raises(ValueError, match="max_attempts"):
            controller.validate_with_retries(fields, max_attempts=0)

    def test_skipped_when_fields_missing(self, settings: Settings) -> None:
        """Should not call SUNAT when the query cannot be built."""
        client = MagicMock()
        controller = ValidationController(settings, client)

        result = controller.validate_with_retries(ExtractedInvoiceFields(issuer_tax_id="20123456789"))

        assert result.skipped
        assert "issue_date" in result.skipped_reason
        assert "total_amount" in result.skipped_reason
        client.validate.assert_not_called()

    @pytest.mark.parametrize("error", [AuthorityRequestError("boom", status_code=500), CredentialError("no token")])
    def test_errors_propagate(
        self, settings: Settings, fields: ExtractedInvoiceFields, error: Exception
    ) -> None:
        """Should not retry on client errors."""
        client = MagicMock()
        client.validate.side_effect = error
        controller = ValidationController(settings, client)

        with pytest.raises(type(error)):
            controller.validate_with_retries(fields, max_attempts=5)
        assert client.validate.call_count == 1

    def test_corrected_fields(self, settings: Settings, fields: ExtractedInvoiceFields) -> None:
        """Should carry the matched amount and date into a corrected copy."""
        client = FakeSunatClient(Decimal("118.00"), date(2025, 3, 16))
        controller = ValidationController(settings, client)

        result = controller.validate_with_retries(fields, max_attempts=8)
        corrected = result.corrected_fields(fields)

        assert result.perturbation == "date +1 day"
        assert corrected.issue_date == date(2025, 3, 16)
        assert corrected.total_amount == Decimal("118.00")
        assert fields.issue_date == date(2025, 3, 15)
