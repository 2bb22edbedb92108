"""Unit tests for the extraction and validation API.

Tests cover:
- Health check endpoints
- File upload validation
- Field extraction from uploads and OCR word boxes
- SUNAT validation and RUC lookup error mapping
- Prometheus metrics endpoint
"""

import io
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest
from fastapi import status
from fastapi.testclient import TestClient
from PIL import Image

from sunat_engine.api.main import app
from sunat_engine.authority.errors import AuthorityRequestError, CredentialError
from sunat_engine.authority.schema import CounterpartyRecord, ValidationOutcome, ValidationStatus
from sunat_engine.ocr.service import OCRResult
from sunat_engine.validation.controller import RetryResult

INVOICE_TEXT = (
    "FACTURA ELECTRONICA\nRUC: 20123456789\nF001-00012345\nFecha: 15/03/2025\n"
    "OP GRAVADA 100.00\nI.G.V (18%) 18.00\nTOTAL A PAGAR 118.00"
)

VALIDATION_BODY = {
    "fields": {
        "issuer_tax_id": "20123456789",
        "document_type": "01",
        "document_series_number": "F001-00012345",
        "issue_date": "2025-03-15",
        "total_amount": "118.00",
    }
}


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def sample_image_bytes() -> bytes:
    """Create a simple test image as bytes."""
    img = Image.new("RGB", (200, 100), color="white")
    img_bytes = io.BytesIO()
    img.save(img_bytes, format="PNG")
    img_bytes.seek(0)
    return img_bytes.read()


def test_health_check(client: TestClient) -> None:
    """Test health check endpoint."""
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert "service" in data


def test_readiness_check(client: TestClient) -> None:
    """Test readiness check endpoint."""
    with (
        patch("sunat_engine.api.main.ocr_service.is_available", return_value=True),
        patch("sunat_engine.api.main.sunat_client.is_configured", return_value=False),
    ):
        response = client.get("/ready")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["ready"] is True
    assert data["ocr_available"] is True
    assert data["sunat_configured"] is False


def test_readiness_without_tesseract(client: TestClient) -> None:
    """Test that the service is not ready when Tesseract cannot be invoked."""
    with patch("sunat_engine.api.main.ocr_service.is_available", return_value=False):
        response = client.get("/ready")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["ready"] is False
    assert data["ocr_available"] is False


def test_extract_document(client: TestClient, sample_image_bytes: bytes) -> None:
    """Test uploading an image returns text and extracted fields."""
    files = {"file": ("factura.png", sample_image_bytes, "image/png")}

    with patch("sunat_engine.api.main.ocr_service.extract_from_bytes") as mock_ocr:
        mock_ocr.return_value = OCRResult(text=INVOICE_TEXT, success=True)

        response = client.post("/api/v1/documents/extract", files=files)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["success"] is True
    assert "document_id" in data
    assert data["text"] == INVOICE_TEXT
    assert data["fields"]["issuer_tax_id"] == "20123456789"
    assert data["fields"]["document_type"] == "01"
    assert Decimal(data["fields"]["total_amount"]) == Decimal("118.00")
    mock_ocr.assert_called_once_with(sample_image_bytes)


def test_extract_document_ocr_failure(client: TestClient, sample_image_bytes: bytes) -> None:
    """Test that an OCR failure returns 500."""
    files = {"file": ("factura.png", sample_image_bytes, "image/png")}

    with patch("sunat_engine.api.main.ocr_service.extract_from_bytes") as mock_ocr:
        mock_ocr.return_value = OCRResult(success=False, error="tesseract missing")

        response = client.post("/api/v1/documents/extract", files=files)

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert "tesseract missing" in response.json()["detail"]


def test_extract_document_no_file(client: TestClient) -> None:
    """Test upload endpoint with no file."""
    response = client.post("/api/v1/documents/extract")

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_extract_document_invalid_file_type(client: TestClient) -> None:
    """Test upload endpoint with invalid file type."""
    files = {"file": ("test.txt", b"Not an image", "text/plain")}

    response = client.post("/api/v1/documents/extract", files=files)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "detail" in response.json()


def test_extract_document_empty_file(client: TestClient) -> None:
    """Test upload endpoint with empty file."""
    files = {"file": ("test.png", b"", "image/png")}

    response = client.post("/api/v1/documents/extract", files=files)

    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_extract_fields_from_words(client: TestClient) -> None:
    """Test extraction from word boxes produced by another OCR engine."""
    body = {
        "words": [
            ["RUC:", 10.0],
            ["20123456789", 10.5],
            ["TOTAL", 40.0],
            ["A", 40.0],
            ["PAGAR", 41.0],
            ["59.00", 41.5],
        ]
    }

    response = client.post("/api/v1/fields/extract", json=body)

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["issuer_tax_id"] == "20123456789"
    assert Decimal(data["total_amount"]) == Decimal("59.00")


def test_extract_fields_requires_input(client: TestClient) -> None:
    """Test that an empty extraction request is rejected."""
    response = client.post("/api/v1/fields/extract", json={"words": [], "text": "  "})

    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_validate_fields(client: TestClient) -> None:
    """Test a successful validation with its interpretation."""
    result = RetryResult(
        outcome=ValidationOutcome(status=ValidationStatus.VALID),
        attempts_used=3,
        perturbation="amount -0.01",
    )

    with patch("sunat_engine.api.main.validation_controller.validate_with_retries") as mock_validate:
        mock_validate.return_value = result

        response = client.post("/api/v1/validations", json={**VALIDATION_BODY, "max_attempts": 5})

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["result"]["outcome"]["status"] == "VALID"
    assert data["result"]["attempts_used"] == 3
    assert data["result"]["perturbation"] == "amount -0.01"
    assert data["interpretation"]["is_valid"] is True
    assert data["interpretation"]["display_message"] == "Comprobante is VALID at SUNAT"

    fields, max_attempts = mock_validate.call_args.args
    assert fields.issue_date == date(2025, 3, 15)
    assert max_attempts == 5


def test_validate_fields_skipped(client: TestClient) -> None:
    """Test that missing fields return 422 with the reason."""
    with patch("sunat_engine.api.main.validation_controller.validate_with_retries") as mock_validate:
        mock_validate.return_value = RetryResult(skipped_reason="Insufficient data to validate: issue_date")

        response = client.post("/api/v1/validations", json={"fields": {}})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert "issue_date" in response.json()["detail"]


def test_validate_fields_budget_out_of_range(client: TestClient) -> None:
    """Test that the attempt budget is bounded."""
    response = client.post("/api/v1/validations", json={**VALIDATION_BODY, "max_attempts": 20})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.parametrize(
    ("error", "expected_status"),
    [
        (CredentialError("token exchange failed"), status.HTTP_503_SERVICE_UNAVAILABLE),
        (AuthorityRequestError("SUNAT validate error 500", status_code=500), status.HTTP_502_BAD_GATEWAY),
    ],
)
def test_validate_fields_errors(client: TestClient, error: Exception, expected_status: int) -> None:
    """Test SUNAT failures map to gateway errors."""
    with patch("sunat_engine.api.main.validation_controller.validate_with_retries") as mock_validate:
        mock_validate.side_effect = error

        response = client.post("/api/v1/validations", json=VALIDATION_BODY)

    assert response.status_code == expected_status


def test_lookup_counterparty(client: TestClient) -> None:
    """Test a RUC lookup returns the record and its interpretation."""
    record = CounterpartyRecord(
        tax_id="20123456789",
        name="DISTRIBUIDORA NORTE S.A.C.",
        registry_status="ACTIVO",
        street_type="AV.",
        street_name="JAVIER PRADO",
        street_number="4200",
    )

    with patch("sunat_engine.api.main.sunat_client.lookup_counterparty", return_value=record):
        response = client.get("/api/v1/counterparties/20123456789")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["record"]["name"] == "DISTRIBUIDORA NORTE S.A.C."
    assert data["fiscal_address"] == "AV. JAVIER PRADO 4200"
    assert data["interpretation"]["display_message"] == "RUC ACTIVE"


def test_lookup_counterparty_invalid_ruc(client: TestClient) -> None:
    """Test that malformed RUCs are rejected before calling SUNAT."""
    with patch("sunat_engine.api.main.sunat_client.lookup_counterparty") as mock_lookup:
        response = client.get("/api/v1/counterparties/12345")

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    mock_lookup.assert_not_called()


@pytest.mark.parametrize(
    ("error", "expected_status"),
    [
        (AuthorityRequestError("not found", status_code=404), status.HTTP_404_NOT_FOUND),
        (AuthorityRequestError("timeout"), status.HTTP_502_BAD_GATEWAY),
        (CredentialError("no token"), status.HTTP_503_SERVICE_UNAVAILABLE),
    ],
)
def test_lookup_counterparty_errors(client: TestClient, error: Exception, expected_status: int) -> None:
    """Test lookup failures map to HTTP errors."""
    with patch("sunat_engine.api.main.sunat_client.lookup_counterparty", side_effect=error):
        response = client.get("/api/v1/counterparties/20123456789")

    assert response.status_code == expected_status


def test_metrics_endpoint(client: TestClient) -> None:
    """Test Prometheus metrics endpoint."""
    response = client.get("/metrics")

    assert response.status_code == status.HTTP_200_OK
    content_type = response.headers["content-type"]
    assert "openmetrics-text" in content_type or "text/plain" in content_type
    assert "http_requests_total" in response.text or "# HELP" in response.text


def test_metrics_recorded_on_requests(client: TestClient) -> None:
    """Test that metrics are recorded on API requests."""
    client.get("/health")

    response = client.get("/metrics")

    assert "http_requests_total" in response.text
