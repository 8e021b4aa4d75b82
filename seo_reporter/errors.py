"""
Error taxonomy for the ranking and reporting pipeline.

Single-item operations raise these directly; batch operations catch them
per item and record ``to_dict()`` in their result lists.
"""

from typing import Optional


class SeoReporterError(Exception):
    """Base class for all pipeline errors."""

    code = "error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def to_dict(self) -> dict:
        data = {"error": self.message, "code": self.code}
        if self.status_code is not None:
            data["status_code"] = self.status_code
        return data


class NotFoundError(SeoReporterError):
    """A referenced website, report or tracked entity does not exist."""

    code = "not_found"


class ValidationError(SeoReporterError):
    """Required input is missing or malformed."""

    code = "validation_error"


class UpstreamError(SeoReporterError):
    """The search provider failed or returned unusable data."""

    code = "upstream_error"


class DeliveryError(SeoReporterError):
    """The outbound email transport rejected the send."""

    code = "delivery_error"
