"""
Error taxonomy for the enrichment pipeline.

  ConfigurationError    missing credential / bad mode      fatal for the calling operation
  UpstreamRequestError  non-2xx, malformed JSON, 429       recovered by the owning component
  ValidationError       malformed ticker symbol            raised before any upstream call
  PartialDataError      identifier/facts unresolved        isolated to one ticker in a batch
  PipelineFatalError    no quotes at all                   flips the cache to status="error"

status_code is what the route layer maps each error to.
"""

from __future__ import annotations


class ValueScreenError(Exception):
    """Base error with a user-facing message and an HTTP status for the route layer."""

    status_code: int = 500
    message: str = "Unexpected error"

    def __init__(self, message: str | None = None):
        self.message = message or self.message
        super().__init__(self.message)


class ConfigurationError(ValueScreenError):
    status_code = 500
    message = "Service is not configured"


class UpstreamRequestError(ValueScreenError):
    status_code = 502
    message = "Upstream request failed"


class ValidationError(ValueScreenError):
    status_code = 400
    message = "Please provide a valid ticker symbol."


class PartialDataError(ValueScreenError):
    status_code = 404
    message = "Data for this ticker could not be resolved"


class PipelineFatalError(ValueScreenError):
    status_code = 503
    message = "Preload failed."
