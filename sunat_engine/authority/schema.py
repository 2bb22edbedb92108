"""Value objects exchanged with the SUNAT comprobante validation API.

Raw status strings from SUNAT ("0".."3") are mapped to ``ValidationStatus``
inside the client and never leave it.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sunat_engine.extraction.schema import DocumentType, ExtractedInvoiceFields

AMOUNT_QUANTUM = Decimal("0.01")


class ValidationStatus(str, Enum):
    """Status of a comprobante according to SUNAT."""

    VALID = "VALID"
    NOT_FOUND = "NOT_FOUND"
    ANNULLED = "ANNULLED"
    REJECTED = "REJECTED"


# estadoCp codes returned by validarcomprobante
STATUS_CODES: dict[str, ValidationStatus] = {
    "0": ValidationStatus.NOT_FOUND,
    "1": ValidationStatus.VALID,
    "2": ValidationStatus.ANNULLED,
    "3": ValidationStatus.REJECTED,
}


class ValidationQuery(BaseModel):
    """Exact-match query accepted by validarcomprobante.

    Immutable; perturbed candidates are derived with ``model_copy``.
    """

    model_config = ConfigDict(frozen=True)

    issuer_tax_id: str
    document_type: DocumentType
    series: str
    number: str
    issue_date: date
    amount: Decimal = Field(ge=0)

    @staticmethod
    def missing_fields(fields: ExtractedInvoiceFields) -> list[str]:
        """List the fields that prevent building a query."""
        missing = []
        if not fields.issuer_tax_id:
            missing.append("issuer_tax_id")
        if fields.document_type is None:
            missing.append("document_type")
        if fields.split_series_number() is None:
            missing.append("document_series_number")
        if fields.issue_date is None:
            missing.append("issue_date")
        if fields.total_amount is None:
            missing.append("total_amount")
        return missing

    @classmethod
    def from_fields(cls, fields: ExtractedInvoiceFields) -> "ValidationQuery | None":
        """Build a query from extracted fields.

        Args:
            fields: Reconciled extraction result

        Returns:
            Query, or None when a required field is missing or malformed
        """
        split = fields.split_series_number()
        if cls.missing_fields(fields) or split is None:
            return None

        series, number = split
        return cls(
            issuer_tax_id=fields.issuer_tax_id,
            document_type=fields.document_type,
            series=series,
            number=number,
            issue_date=fields.issue_date,
            amount=fields.total_amount,
        )

    def to_payload(self) -> dict[str, str]:
        """Render the JSON body for validarcomprobante."""
        return {
            "numRuc": self.issuer_tax_id,
            "codComp": self.document_type.value,
            "numeroSerie": self.series,
            "numero": self.number,
            "fechaEmision": self.issue_date.strftime("%d/%m/%Y"),
            "monto": f"{self.amount.quantize(AMOUNT_QUANTUM):.2f}",
        }


class ValidationOutcome(BaseModel):
    """Result of one validation call.

    Attributes:
        status: Mapped comprobante status
        counterparty_registry_status: estadoRuc of the issuer, when returned
        domicile_condition: condDomiRuc of the issuer, when returned
        notes: Free-text observaciones
    """

    status: ValidationStatus
    counterparty_registry_status: str | None = None
    domicile_condition: str | None = None
    notes: list[str] = Field(default_factory=list)


class CachedCredential(BaseModel):
    """Bearer token and the instant (epoch millis) it stops being used."""

    model_config = ConfigDict(frozen=True)

    token: str
    expires_at_epoch_millis: int

    def is_valid(self, now_millis: int) -> bool:
        return now_millis < self.expires_at_epoch_millis


class CounterpartyRecord(BaseModel):
    """Registry data for a RUC (consulta RUC plus domicilio fiscal)."""

    tax_id: str
    name: str | None = None
    registry_status: str | None = None
    domicile_condition: str | None = None
    taxpayer_type_code: str | None = None
    taxpayer_type: str | None = None
    department: str | None = None
    province: str | None = None
    district: str | None = None

    # Fiscal address (best-effort second call)
    street_type: str | None = None
    street_name: str | None = None
    street_number: str | None = None
    interior: str | None = None
    activity_code: str | None = None
    activity_description: str | None = None

    @classmethod
    def from_api(
        cls, data: dict[str, Any], fiscal_address: dict[str, Any] | None = None
    ) -> "CounterpartyRecord":
        """Map SUNAT response keys onto the record."""
        address = fiscal_address or {}
        return cls(
            tax_id=data.get("ddpNumruc", ""),
            name=data.get("ddpNombre"),
            registry_status=data.get("descEstado"),
            domicile_condition=data.get("descFlag22"),
            taxpayer_type_code=data.get("ddpTpoemp"),
            taxpayer_type=data.get("descTpoemp"),
            department=data.get("descDep"),
            province=data.get("descProv"),
            district=data.get("descDist"),
            street_type=address.get("descTipvia"),
            street_name=address.get("descNomvia"),
            street_number=address.get("descNumer"),
            interior=address.get("descInterior"),
            activity_code=address.get("ddpCiiu"),
            activity_description=address.get("descCiiu"),
        )

    @property
    def fiscal_address(self) -> str | None:
        """Single-line fiscal address, or None when SUNAT returned none."""
        parts = [self.street_type, self.street_name, self.street_number, self.interior]
        text = " ".join(part.strip() for part in parts if part and part.strip() and part != "-")
        return text or None
