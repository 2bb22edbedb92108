"""Display mappings for validation outcomes and RUC registry states.

Pure functions; no I/O.
"""

from pydantic import BaseModel

from sunat_engine.authority.schema import ValidationOutcome, ValidationStatus


class OutcomeInterpretation(BaseModel):
    """How a validation outcome should be presented."""

    is_valid: bool
    display_message: str
    color: str


class RegistryInterpretation(BaseModel):
    """How a RUC registry status should be presented."""

    is_active: bool
    display_message: str
    color: str


_OUTCOME_DISPLAY: dict[ValidationStatus, OutcomeInterpretation] = {
    ValidationStatus.VALID: OutcomeInterpretation(
        is_valid=True, display_message="Comprobante is VALID at SUNAT", color="green"
    ),
    ValidationStatus.NOT_FOUND: OutcomeInterpretation(
        is_valid=False, display_message="Comprobante does NOT EXIST at SUNAT", color="red"
    ),
    ValidationStatus.ANNULLED: OutcomeInterpretation(
        is_valid=False, display_message="Comprobante was ANNULLED", color="orange"
    ),
    ValidationStatus.REJECTED: OutcomeInterpretation(
        is_valid=False, display_message="Comprobante was REJECTED by SUNAT", color="red"
    ),
}

_UNKNOWN = OutcomeInterpretation(is_valid=False, display_message="Unknown status", color="gray")


def interpret_outcome(outcome: ValidationOutcome | None) -> OutcomeInterpretation:
    """Map a validation outcome to a display message.

    Args:
        outcome: Outcome returned by the controller, or None if never validated

    Returns:
        Validity flag, message and display color
    """
    if outcome is None:
        return _UNKNOWN
    return _OUTCOME_DISPLAY.get(outcome.status, _UNKNOWN)


def interpret_registry_status(status: str | None) -> RegistryInterpretation:
    """Map a RUC registry status (e.g. "ACTIVO", "BAJA DEFINITIVA") to a display message.

    Unrecognized statuses are shown verbatim.
    """
    if not status:
        return RegistryInterpretation(is_active=False, display_message="Unknown status", color="gray")

    upper = status.upper()
    if "ACTIVO" in upper and "INACTIVO" not in upper:
        return RegistryInterpretation(is_active=True, display_message="RUC ACTIVE", color="green")
    if "BAJA DEFINITIVA" in upper:
        return RegistryInterpretation(
            is_active=False, display_message="RUC permanently DEREGISTERED", color="red"
        )
    if "BAJA" in upper:
        return RegistryInterpretation(
            is_active=False, display_message="RUC DEREGISTERED", color="orange"
        )
    if "SUSPENDIDO" in upper or "SUSPENSION" in upper:
        return RegistryInterpretation(is_active=False, display_message="RUC SUSPENDED", color="orange")
    return RegistryInterpretation(is_active=False, display_message=status, color="gray")
