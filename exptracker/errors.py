# exptracker/errors.py
from __future__ import annotations


class TrackerError(Exception):
    """Base for errors raised by the persistence layer."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"error": self.message}


class ValidationError(TrackerError):
    status_code = 400


class NotFoundError(TrackerError):
    status_code = 404


class ConflictError(TrackerError):
    """Duplicate category name, or a delete blocked by referencing rows."""

    status_code = 409
