"""Domain exceptions raised by the service layer.

The FastAPI app maps each class to an HTTP status through ``status_code``;
anything else that escapes a service is an unexpected failure.
"""
from __future__ import annotations


class ConsensusError(Exception):
    """Base class for failures scoped to a single request."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ConsensusError):
    """Empty or oversized text, or a value outside its allowed set."""
    status_code = 400


class Forbidden(ConsensusError):
    status_code = 403


class NotFound(ConsensusError):
    status_code = 404


class InvalidTransition(ConsensusError):
    """A terminal reply was asked to move to the other terminal state."""
    status_code = 409
