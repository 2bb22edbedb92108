"""SUNAT API client for comprobante validation and RUC lookups.

Performs exactly one network call per validation (no transport-level
retries; perturbation retries live in the validation controller). The OAuth2
bearer token is cached per client instance and refreshed a safety margin
before SUNAT's stated expiry.

API reference (SUNAT "Consulta Integrada de Comprobante de Pago"):
https://cpe.sunat.gob.pe/
"""

import logging
import threading
import time
from collections.abc import Callable
from typing import Any

import httpx

from sunat_engine.authority.errors import AuthorityRequestError, CredentialError
from sunat_engine.authority.schema import (
    STATUS_CODES,
    CachedCredential,
    CounterpartyRecord,
    ValidationOutcome,
    ValidationQuery,
    ValidationStatus,
)
from sunat_engine.shared.config import Settings
from sunat_engine.shared.metrics import (
    authority_request_duration_seconds,
    authority_requests_total,
    authority_token_refreshes_total,
)

logger = logging.getLogger(__name__)


class SunatClient:
    """Client for the SUNAT contribuyente API.

    Safe to share between threads: the credential cache is lock-guarded.
    """

    def __init__(
        self,
        settings: Settings,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize SUNAT client.

        Args:
            settings: Application settings with SUNAT credentials
            http_client: Optional preconfigured httpx client (tests inject a mock transport)
            clock: Returns the current time in epoch seconds
        """
        self.settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=settings.sunat_request_timeout)
        self._clock = clock
        self._credential: CachedCredential | None = None
        self._lock = threading.Lock()

        self._token_url = settings.sunat_token_url.format(client_id=settings.sunat_client_id)
        self._contribuyentes_url = f"{settings.sunat_api_base_url}/contribuyente/contribuyentes"

    def __enter__(self) -> "SunatClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            self._client.close()

    def _now_millis(self) -> int:
        return int(self._clock() * 1000)

    def is_configured(self) -> bool:
        """Check if client id, secret and querying RUC are all set."""
        return bool(
            self.settings.sunat_client_id
            and self.settings.sunat_client_secret
            and self.settings.sunat_ruc
        )

    def acquire_credential(self) -> str:
        """Return a bearer token, exchanging client credentials when needed.

        Returns:
            Access token

        Raises:
            CredentialError: If the token exchange fails for any reason
        """
        with self._lock:
            if self._credential is not None and self._credential.is_valid(self._now_millis()):
                logger.debug("Using cached SUNAT token")
                return self._credential.token

            self._credential = self._exchange_credentials()
            return self._credential.token

    def invalidate_credential(self) -> None:
        """Drop the cached token so the next call performs a new exchange."""
        with self._lock:
            self._credential = None

    def _exchange_credentials(self) -> CachedCredential:
        if not self.is_configured():
            raise CredentialError("SUNAT credentials are not configured")

        logger.info("Requesting new SUNAT OAuth2 token")
        form = {
            "grant_type": "client_credentials",
            "scope": self.settings.sunat_scope,
            "client_id": self.settings.sunat_client_id,
            "client_secret": self.settings.sunat_client_secret,
        }

        start_time = time.time()
        try:
            response = self._client.post(self._token_url, data=form)
        except httpx.HTTPError as e:
            authority_requests_total.labels(operation="token", status="error").inc()
            logger.error(f"SUNAT token request failed: {e}")
            raise CredentialError(f"SUNAT token request failed: {e}") from e
        finally:
            authority_request_duration_seconds.labels(operation="token").observe(
                time.time() - start_time
            )

        if response.status_code != 200:
            authority_requests_total.labels(operation="token", status="error").inc()
            logger.error(f"SUNAT token error {response.status_code}: {response.text}")
            raise CredentialError(f"SUNAT token error {response.status_code}: {response.text}")

        try:
            body = response.json()
            token = body["access_token"]
            expires_in = int(body.get("expires_in", 0))
        except (ValueError, KeyError, TypeError) as e:
            authority_requests_total.labels(operation="token", status="error").inc()
            logger.error(f"Malformed SUNAT token response: {e}")
            raise CredentialError(f"Malformed SUNAT token response: {e}") from e

        lifetime = max(0, expires_in - self.settings.sunat_token_safety_margin)
        authority_requests_total.labels(operation="token", status="success").inc()
        authority_token_refreshes_total.inc()
        logger.info(f"SUNAT token obtained (usable for {lifetime}s)")

        return CachedCredential(
            token=token,
            expires_at_epoch_millis=self._now_millis() + lifetime * 1000,
        )

    def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send an authenticated request.

        Raises:
            CredentialError: If no token can be acquired
            AuthorityRequestError: On transport errors
        """
        token = self.acquire_credential()
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

        start_time = time.time()
        try:
            return self._client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            authority_requests_total.labels(operation=operation, status="error").inc()
            logger.warning(f"SUNAT {operation} transport error: {e}")
            raise AuthorityRequestError(f"SUNAT {operation} request failed: {e}") from e
        finally:
            authority_request_duration_seconds.labels(operation=operation).observe(
                time.time() - start_time
            )

    def _raise_for_status(self, operation: str, response: httpx.Response) -> None:
        if response.status_code == 401:
            # Token revoked or expired early; force a new exchange next time
            self.invalidate_credential()
        if not response.is_success:
            authority_requests_total.labels(operation=operation, status="error").inc()
            raise AuthorityRequestError(
                f"SUNAT {operation} error {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

    def validate(self, query: ValidationQuery) -> ValidationOutcome:
        """Validate one comprobante with an exact-match query.

        Args:
            query: Exact-match query

        Returns:
            Mapped outcome; HTTP 404 is reported as NOT_FOUND

        Raises:
            CredentialError: If no token can be acquired
            AuthorityRequestError: On transport errors, other non-2xx responses
                or an unknown status code
        """
        payload = query.to_payload()
        logger.info(
            f"Validating {payload['numRuc']} {payload['codComp']} "
            f"{payload['numeroSerie']}-{payload['numero']} "
            f"{payload['fechaEmision']} {payload['monto']}"
        )

        url = f"{self._contribuyentes_url}/{self.settings.sunat_ruc}/validarcomprobante"
        response = self._request("validate", "POST", url, json=payload)

        if response.status_code == 404:
            authority_requests_total.labels(operation="validate", status="not_found").inc()
            return ValidationOutcome(status=ValidationStatus.NOT_FOUND)
        self._raise_for_status("validate", response)

        try:
            body = response.json()
        except ValueError as e:
            authority_requests_total.labels(operation="validate", status="error").inc()
            raise AuthorityRequestError(f"Malformed SUNAT validation response: {e}") from e

        data = (body.get("data") or {}) if isinstance(body, dict) else None
        if not isinstance(data, dict):
            authority_requests_total.labels(operation="validate", status="error").inc()
            raise AuthorityRequestError(f"Malformed SUNAT validation response: {body!r}")

        code = str(data.get("estadoCp"))
        status = STATUS_CODES.get(code)
        if status is None:
            authority_requests_total.labels(operation="validate", status="error").inc()
            raise AuthorityRequestError(f"Unknown SUNAT estadoCp: {code!r}")

        authority_requests_total.labels(operation="validate", status="success").inc()
        logger.info(f"SUNAT answered estadoCp={code} ({status.value})")

        return ValidationOutcome(
            status=status,
            counterparty_registry_status=data.get("estadoRuc"),
            domicile_condition=data.get("condDomiRuc"),
            notes=list(data.get("observaciones") or []),
        )

    def lookup_counterparty(self, tax_id: str) -> CounterpartyRecord:
        """Query registry data and fiscal address for a RUC.

        The fiscal address call is best-effort; its failure leaves the address
        fields empty.

        Args:
            tax_id: 11-digit RUC to look up

        Returns:
            Counterparty registry record

        Raises:
            CredentialError: If no token can be acquired
            AuthorityRequestError: If the main registry query fails
        """
        logger.info(f"Looking up RUC {tax_id}")
        response = self._request("lookup", "GET", f"{self._contribuyentes_url}/{tax_id}")
        self._raise_for_status("lookup", response)

        try:
            data = response.json()
        except ValueError as e:
            authority_requests_total.labels(operation="lookup", status="error").inc()
            raise AuthorityRequestError(f"Malformed SUNAT RUC response: {e}") from e
        if not isinstance(data, dict):
            authority_requests_total.labels(operation="lookup", status="error").inc()
            raise AuthorityRequestError(f"Malformed SUNAT RUC response: {data!r}")
        authority_requests_total.labels(operation="lookup", status="success").inc()

        fiscal_address: dict[str, Any] | None = None
        try:
            address_response = self._request(
                "lookup_address", "GET", f"{self._contribuyentes_url}/{tax_id}/domiciliofiscal"
            )
            address = address_response.json() if address_response.is_success else None
            if isinstance(address, dict):
                fiscal_address = address
                authority_requests_total.labels(operation="lookup_address", status="success").inc()
            else:
                authority_requests_total.labels(operation="lookup_address", status="error").inc()
        except (AuthorityRequestError, ValueError) as e:
            logger.warning(f"Fiscal address for {tax_id} unavailable: {e}")

        return CounterpartyRecord.from_api({"ddpNumruc": tax_id, **data}, fiscal_address)

    def check_connection(self) -> bool:
        """Check whether a SUNAT token can be obtained."""
        try:
            self.acquire_credential()
            return True
        except CredentialError as e:
            logger.warning(f"SUNAT connection check failed: {e}")
            return False
