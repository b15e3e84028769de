"""
Error taxonomy for the render service.

Every error carries a short user-facing summary and the underlying
message. The app turns them into {"error": ..., "details": ...} bodies.
"""

from typing import Any, Dict, Optional


class RenderServiceError(Exception):
    status_code = 500
    summary = "Request failed"

    def __init__(self, details: str, summary: Optional[str] = None, extra: Optional[Dict[str, Any]] = None):
        super().__init__(details)
        self.details = details
        if summary is not None:
            self.summary = summary
        self.extra = extra or {}

    def to_body(self) -> Dict[str, Any]:
        body = {"error": self.summary, "details": self.details}
        body.update(self.extra)
        return body


class ValidationError(RenderServiceError):
    """Missing, oversized or wrong-type upload."""
    status_code = 400
    summary = "Invalid image upload"


class AnalysisError(RenderServiceError):
    """Vision call failed. Recovered locally by the transform flow."""
    summary = "Failed to analyze image"


class ExternalAPIError(RenderServiceError):
    """Image generation call failed or returned no image."""
    summary = "Failed to transform image"
