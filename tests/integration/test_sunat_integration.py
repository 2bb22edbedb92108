"""Integration tests for the SUNAT API client.

These tests require:
- APP_SUNAT_CLIENT_ID, APP_SUNAT_CLIENT_SECRET and APP_SUNAT_RUC set
- Internet connection to the SUNAT API

Tests are skipped if the credentials are not available.
Use pytest -v -m integration to run only integration tests.
"""

import os
from datetime import date
from decimal import Decimal

import pytest

from sunat_engine.authority.client import SunatClient
from sunat_engine.authority.schema import ValidationQuery, ValidationStatus
from sunat_engine.extraction.schema import DocumentType
from sunat_engine.shared.config import Settings
from sunat_engine.validation.controller import ValidationController

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(
        not all(
            os.getenv(name)
            for name in ("APP_SUNAT_CLIENT_ID", "APP_SUNAT_CLIENT_SECRET", "APP_SUNAT_RUC")
        ),
        reason="SUNAT credentials not set - skipping integration tests",
    ),
]


@pytest.fixture
def settings() -> Settings:
    """Create settings for integration tests."""
    return Settings()


@pytest.fixture
def client(settings: Settings):  # type: ignore[no-untyped-def]
    """Create a SUNAT client and close it afterwards."""
    with SunatClient(settings) as sunat_client:
        yield sunat_client


def test_token_exchange(client: SunatClient) -> None:
    """Test that the configured credentials produce a token, cached on reuse."""
    token = client.acquire_credential()

    assert token
    assert client.acquire_credential() == token


def test_lookup_own_ruc(client: SunatClient, settings: Settings) -> None:
    """Test a registry lookup of the querying organization."""
    record = client.lookup_counterparty(settings.sunat_ruc)

    assert record.tax_id == settings.sunat_ruc
    assert record.registry_status


def test_unknown_comprobante_is_not_found(client: SunatClient, settings: Settings) -> None:
    """Test that a fabricated comprobante is reported as NOT_FOUND."""
    query = ValidationQuery(
        issuer_tax_id=settings.sunat_ruc,
        document_type=DocumentType.INVOICE,
        series="F999",
        number="99999999",
        issue_date=date(2020, 1, 1),
        amount=Decimal("0.01"),
    )

    outcome = client.validate(query)

    assert outcome.status is ValidationStatus.NOT_FOUND


@pytest.mark.slow
def test_retries_exhaust_budget(client: SunatClient, settings: Settings) -> None:
    """Test that the controller stops after the attempt budget."""
    controller = ValidationController(settings, client)
    query = ValidationQuery(
        issuer_tax_id=settings.sunat_ruc,
        document_type=DocumentType.INVOICE,
        series="F999",
        number="99999999",
        issue_date=date(2020, 1, 1),
        amount=Decimal("10.00"),
    )

    result = controller.validate_query(query, max_attempts=3)

    assert result.outcome.status is ValidationStatus.NOT_FOUND
    assert result.attempts_used == 3
