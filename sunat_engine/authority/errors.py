"""Typed failures raised when talking to SUNAT.

Credential failures are fatal for a whole batch; request failures only
affect the document being validated.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sunat_engine.batch.orchestrator import BatchSummary


class AuthorityError(Exception):
    """Base class for SUNAT client errors."""


class CredentialError(AuthorityError):
    """The OAuth2 client-credentials exchange failed."""


class AuthorityRequestError(AuthorityError):
    """A validation or lookup call failed for reasons other than "not found".

    Attributes:
        status_code: HTTP status returned by SUNAT, or None for transport errors
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class BatchAbortedError(AuthorityError):
    """A batch stopped early because credentials could not be acquired.

    Attributes:
        summary: Counts for the documents processed before the abort
    """

    def __init__(self, message: str, summary: "BatchSummary") -> None:
        super().__init__(message)
        self.summary = summary
