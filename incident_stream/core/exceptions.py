"""Exception taxonomy for the incident stream."""

from __future__ import annotations

from typing import Any


class IncidentStreamError(Exception):
    """Base class for all incident stream errors."""


class ConfigurationError(IncidentStreamError, ValueError):
    """Options failed validation; the pipeline must not start."""


class UnregisteredPipelineError(IncidentStreamError, LookupError):
    """Settlement was requested for a pipeline that never registered an ack policy."""

    def __init__(self, pipeline_id: str):
        self.pipeline_id = pipeline_id
        super().__init__(
            f"no acknowledgment policy registered for pipeline {pipeline_id!r}; "
            "register_policy() must be called before settle()"
        )


class SourceError(IncidentStreamError):
    """Transport, HTTP or body failure while talking to the remote API.

    Raised inside the source only; ``fetch()`` converts it to a failed outcome.
    """

    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class TokenError(SourceError):
    """The token endpoint did not hand out an access token."""
