"""
Domain errors raised by the flow ledgers.

Every precondition violation is reported to the caller as one of these
kinds.  Each carries a stable ``code`` and the HTTP status the API layer
answers with; the message is meant to be shown to staff as-is.
"""
from __future__ import annotations

from typing import Any, Optional


class FlowError(Exception):
    code = 'flow_error'
    status_code = 400
    default_message = 'Request could not be completed'

    def __init__(self, message: Optional[str] = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def as_dict(self) -> dict:
        return {'code': self.code, 'message': self.message}


class DuplicateIdentifier(FlowError):
    code = 'duplicate_identifier'
    status_code = 409
    default_message = 'Identifier already exists'


class ResourceUnavailable(FlowError):
    code = 'resource_unavailable'
    status_code = 409
    default_message = 'Bed is not available for assignment, refresh and retry'


class AlreadyAssigned(FlowError):
    code = 'already_assigned'
    status_code = 409
    default_message = 'Patient already has an active bed assignment'


class InvalidTransition(FlowError):
    code = 'invalid_transition'
    status_code = 409
    default_message = 'Status change is not allowed from the current state'


class NotFound(FlowError):
    code = 'not_found'
    status_code = 404
    default_message = 'Not found'


class TransactionConflict(FlowError):
    """Raised when a write keeps losing to concurrent transactions."""
    code = 'transaction_conflict'
    status_code = 503
    default_message = 'The system is busy, please retry'
