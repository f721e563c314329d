"""Error taxonomy shared by the engines and services.

None of these depend on the web framework; main.py maps them to HTTP
responses through ``status_code``.
"""
from typing import Any, Optional


class PortfolioHubError(Exception):
    """Base class for every error surfaced to API callers."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"detail": self.message}
        if self.details is not None:
            body["errors"] = self.details
        return body


class ValidationError(PortfolioHubError):
    """Malformed input: bad subdomain, wrong section shape, index out of range."""

    status_code = 400


class AuthenticationError(PortfolioHubError):
    status_code = 401


class ForbiddenError(PortfolioHubError):
    """Caller is known but may not act on the resource."""

    status_code = 403


class NotFoundError(PortfolioHubError):
    status_code = 404


class ConflictError(PortfolioHubError):
    """Subdomain or custom domain taken, duplicate review, stale revision."""

    status_code = 409


class UpstreamError(PortfolioHubError):
    """Document store or blob storage failure, carrying the underlying message."""

    status_code = 502
