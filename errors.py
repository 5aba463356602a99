"""Error taxonomy for the PDF generation pipeline and its HTTP mapping."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class PdfPipelineError(Exception):
    """Base class for errors raised inside the generation pipeline."""


class AgreementNotFoundError(PdfPipelineError):
    def __init__(self, agreement_id: str):
        super().__init__(f"Agreement not found: {agreement_id}")
        self.agreement_id = agreement_id


class InvalidAgreementStateError(PdfPipelineError):
    def __init__(self, message: str = "Agreement is not properly signed"):
        super().__init__(message)


class OperationTimeoutError(PdfPipelineError):
    def __init__(self, timeout: Optional[float] = None):
        super().__init__("Operation timed out")
        self.timeout = timeout


class DataAccessError(PdfPipelineError):
    """Persistence-layer failure; wraps the driver exception."""


class RenderError(PdfPipelineError):
    """Document rendering failure; wraps the layout/font exception."""


class StorageError(PdfPipelineError):
    """Object storage failure (upload or delete)."""


class AuthenticationError(PdfPipelineError):
    """Bearer credential rejected by the auth collaborator."""


@dataclass(frozen=True)
class ErrorKind:
    name: str
    status_code: int
    message: str


NOT_FOUND = ErrorKind("NotFound", 404, "Agreement not found")
INVALID_STATE = ErrorKind("InvalidState", 400, "Agreement is not in valid state for PDF generation")
TIMEOUT = ErrorKind("Timeout", 408, "PDF generation timed out")
INTERNAL = ErrorKind("Internal", 500, "PDF generation failed")

# Errors that will not go away on retry
NON_RETRYABLE = (AgreementNotFoundError, InvalidAgreementStateError)


def classify_error(exc: BaseException) -> ErrorKind:
    """
    Map a pipeline failure to the HTTP-facing error kind.

    Typed errors are matched first; anything else falls back to the message
    text so errors raised by collaborators classify the same way.
    """
    if isinstance(exc, AgreementNotFoundError):
        return NOT_FOUND
    if isinstance(exc, InvalidAgreementStateError):
        return INVALID_STATE
    if isinstance(exc, OperationTimeoutError):
        return TIMEOUT

    message = str(exc)
    if "not found" in message:
        return NOT_FOUND
    if "not properly signed" in message:
        return INVALID_STATE
    if "timed out" in message:
        return TIMEOUT
    return INTERNAL
