"""
Error taxonomy for the medical-record layer.
None of these are fatal: callers degrade to a banner or an inline message.
"""
from typing import Optional


class ValidationError(ValueError):
    """A required form field is blank or invalid. Never reaches the network."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class RemoteError(Exception):
    """Transport failure or non-success response from the medical-record backend."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class RecordNotFound(KeyError):
    """The record id is not present in the cached collection."""

    def __init__(self, record_id: str):
        super().__init__(record_id)
        self.record_id = record_id

    def __str__(self) -> str:
        return f"Record {self.record_id} not found"
