"""
Progression Engine Errors

Typed failures raised by the standings / promotion / progression services:
- ValidationError: malformed template or write request; nothing is applied
- AmbiguousTieError: a block-position slot sits inside an irreducible tie (absorbed, reported)
- InconsistentStateError: corrupt upstream record; the record is skipped (absorbed, reported)
- ConcurrencyConflictError: the tournament is locked by another cascade; caller retries
"""
from typing import Any, Dict, Optional


class ProgressionError(Exception):
    """Base class; carries an HTTP status and a stable machine code."""

    status_code: int = 500
    code: str = "progression_error"

    def __init__(self, message: str, code: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        self.message = message
        if code:
            self.code = code
        self.context = context or {}
        super().__init__(message)


class ValidationError(ProgressionError):
    status_code = 422
    code = "validation_error"


class NotFoundError(ValidationError):
    """Write request referencing a match/block/tournament that does not exist."""

    status_code = 404
    code = "not_found"


class InvalidTransitionError(ValidationError):
    status_code = 409
    code = "invalid_transition"


class AmbiguousTieError(ProgressionError):
    status_code = 409
    code = "ambiguous_tie"


class InconsistentStateError(ProgressionError):
    status_code = 500
    code = "inconsistent_state"


class ConcurrencyConflictError(ProgressionError):
    status_code = 409
    code = "concurrency_conflict"
