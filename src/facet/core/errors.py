"""Application error hierarchy.

Every error that should reach an API client derives from :class:`FacetError`
and carries its own HTTP status code and machine-readable code.  The FastAPI
application renders these uniformly (see ``facet.api.main``); anything else is
an unexpected server error.

=================  ======  ==================  ===================================
Class              Status  Code                Raised when
=================  ======  ==================  ===================================
ValidationError    400     VALIDATION_ERROR    Malformed input beyond schema checks
NotFoundError      404     NOT_FOUND           Missing or foreign-owned record
UpstreamError      502     UPSTREAM_ERROR      Generative API failed or was empty
StorageError       500     STORAGE_ERROR       Object store or database failure
=================  ======  ==================  ===================================
"""

from __future__ import annotations

from typing import Any


class FacetError(Exception):
    """Base class for client-facing application errors.

    Attributes:
        message: Human-readable description returned to the client.
        status_code: HTTP status code used in the response.
        code: Stable machine-readable error code.
        details: Optional extra context (stringified in the response).
    """

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        """Return the JSON body for this error."""
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = str(self.details)
        return body


class ValidationError(FacetError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(FacetError):
    """A requested record does not exist (or belongs to another project)."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str | None = None) -> None:
        if identifier:
            message = f"{resource} with id {identifier} not found"
        else:
            message = f"{resource} not found"
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier


class UpstreamError(FacetError):
    status_code = 502
    code = "UPSTREAM_ERROR"


class StorageError(FacetError):
    status_code = 500
    code = "STORAGE_ERROR"
