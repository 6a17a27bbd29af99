"""Typed errors raised by the core; translated to HTTP responses in main.py"""

from typing import Optional


class ShelfrentError(Exception):
    """Base class for all domain errors"""

    status_code = 400

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidRequest(ShelfrentError):
    """Malformed interval, unknown unit type or other caller error. Not retried."""

    status_code = 400


class NotFound(ShelfrentError):
    status_code = 404


class UnitConflict(ShelfrentError):
    """A unit is no longer free for the requested interval (lost race or stale check)"""

    status_code = 409

    def __init__(self, message: str, conflicts: Optional[list[dict]] = None):
        super().__init__(message, {"conflicts": conflicts or []})
        self.conflicts = conflicts or []


class AlreadyTerminal(ShelfrentError):
    """Contract is already cancelled/expired. The cancel route reports it as success with a note."""

    status_code = 409

    def __init__(self, message: str, contract_id: Optional[int] = None, state: Optional[str] = None):
        super().__init__(message, {"contractId": contract_id, "state": state})
        self.contract_id = contract_id
        self.state = state


class InvalidTransition(ShelfrentError):
    status_code = 409


class DispatchUnavailable(ShelfrentError):
    """The notification queue could not be reached"""

    status_code = 503


class JobOverlap(ShelfrentError):
    """A scheduler run is already in progress"""

    status_code = 409
