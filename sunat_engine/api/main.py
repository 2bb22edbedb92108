"""FastAPI application for comprobante extraction and SUNAT validation.

Endpoints:
- Health and readiness checks for Kubernetes
- Prometheus metrics
- Field extraction from an uploaded image or from OCR word boxes
- Validation against SUNAT with bounded perturbation retries
- RUC registry lookup

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import logging
import re
import time
import uuid

from fastapi import FastAPI, File, HTTPException, Request, Response, UploadFile, status
from pydantic import BaseModel, Field

from sunat_engine.authority.client import SunatClient
from sunat_engine.authority.errors import AuthorityRequestError, CredentialError
from sunat_engine.authority.interpret import (
    OutcomeInterpretation,
    RegistryInterpretation,
    interpret_outcome,
    interpret_registry_status,
)
from sunat_engine.authority.schema import CounterpartyRecord
from sunat_engine.extraction.extractor import extract
from sunat_engine.extraction.schema import ExtractedInvoiceFields, OcrWord
from sunat_engine.ocr.service import OCRResult, OCRService
from sunat_engine.shared import metrics
from sunat_engine.shared.config import get_settings
from sunat_engine.validation.controller import RetryResult, ValidationController

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="SUNAT Invoice Engine",
    description="Heuristic comprobante field extraction and SUNAT validation API",
    version=settings.service_version,
)

ocr_service = OCRService(settings)
sunat_client = SunatClient(settings)
validation_controller = ValidationController(settings, sunat_client)

TAX_ID_FORMAT = re.compile(r"^\d{11}$")


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Record request count and duration for every endpoint except /metrics."""
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()
    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    ocr_available: bool
    sunat_configured: bool


class DocumentExtractionResponse(BaseModel):
    """Result of OCR plus field extraction on an uploaded image."""

    success: bool
    document_id: str
    text: str
    fields: ExtractedInvoiceFields | None = None
    error: str | None = None


class FieldExtractionRequest(BaseModel):
    """OCR output produced elsewhere: word boxes, raw text, or both."""

    words: list[OcrWord] = Field(default_factory=list)
    text: str = ""


class ValidationRequest(BaseModel):
    """Fields to validate and an optional attempt budget."""

    fields: ExtractedInvoiceFields
    max_attempts: int | None = Field(None, ge=1, le=8)


class ValidationResponse(BaseModel):
    """Controller result with its display interpretation."""

    result: RetryResult
    interpretation: OutcomeInterpretation


class CounterpartyResponse(BaseModel):
    """Registry record with its display interpretation."""

    record: CounterpartyRecord
    fiscal_address: str | None = None
    interpretation: RegistryInterpretation


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe."""
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint.

    Ready when the Tesseract binary can be invoked. Does not call SUNAT;
    only reports whether credentials are configured.
    """
    ocr_available = ocr_service.is_available()
    return ReadinessResponse(
        ready=ocr_available,
        ocr_available=ocr_available,
        sunat_configured=sunat_client.is_configured(),
    )


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint."""
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


@app.post(
    "/api/v1/documents/extract",
    response_model=DocumentExtractionResponse,
    tags=["Extraction"],
)
async def extract_document(
    file: UploadFile = File(..., description="Image file (PNG, JPEG, etc.)"),  # noqa: B008
) -> DocumentExtractionResponse:
    """Run OCR on an uploaded comprobante image and extract its fields.

    ```bash
    curl -X POST "http://localhost:8000/api/v1/documents/extract" \\
      -F "file=@factura.png"
    ```

    Returns 400 for missing, empty or non-image uploads and 500 when OCR fails.
    """
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")

    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type: {file.content_type}. Only images are supported.",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")

    doc_id = str(uuid.uuid4())
    result = ocr_service.extract_from_bytes(content)
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"OCR processing failed: {result.error}",
        )

    fields = extract(result, settings)
    logger.info(f"Extracted fields for document {doc_id}")
    return DocumentExtractionResponse(success=True, document_id=doc_id, text=result.text, fields=fields)


@app.post("/api/v1/fields/extract", response_model=ExtractedInvoiceFields, tags=["Extraction"])
def extract_fields(request: FieldExtractionRequest) -> ExtractedInvoiceFields:
    """Extract fields from OCR output produced by another engine."""
    if not request.words and not request.text.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Provide 'words' or 'text'"
        )
    return extract(OCRResult(text=request.text, words=request.words), settings)


@app.post("/api/v1/validations", response_model=ValidationResponse, tags=["Validation"])
def validate_fields(request: ValidationRequest) -> ValidationResponse:
    """Validate extracted fields against SUNAT.

    Returns 422 when required fields are missing, 503 when SUNAT credentials
    fail and 502 when the validation call itself fails.
    """
    try:
        result = validation_controller.validate_with_retries(request.fields, request.max_attempts)
    except CredentialError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"SUNAT authentication failed: {e}",
        ) from e
    except AuthorityRequestError as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail=f"SUNAT request failed: {e}"
        ) from e

    if result.skipped:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.skipped_reason
        )

    return ValidationResponse(result=result, interpretation=interpret_outcome(result.outcome))


@app.get(
    "/api/v1/counterparties/{tax_id}",
    response_model=CounterpartyResponse,
    tags=["Validation"],
)
def lookup_counterparty(tax_id: str) -> CounterpartyResponse:
    """Look up a RUC in the SUNAT registry."""
    if not TAX_ID_FORMAT.match(tax_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid RUC: {tax_id}"
        )

    try:
        record = sunat_client.lookup_counterparty(tax_id)
    except CredentialError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"SUNAT authentication failed: {e}",
        ) from e
    except AuthorityRequestError as e:
        code = (
            status.HTTP_404_NOT_FOUND if e.status_code == 404 else status.HTTP_502_BAD_GATEWAY
        )
        raise HTTPException(status_code=code, detail=f"SUNAT lookup failed: {e}") from e

    return CounterpartyResponse(
        record=record,
        fiscal_address=record.fiscal_address,
        interpretation=interpret_registry_status(record.registry_status),
    )
