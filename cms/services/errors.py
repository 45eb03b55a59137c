"""
Service-level exceptions for the CMS.

The application error handlers translate these into JSON responses:
NotFoundError -> 404, InvalidStateError -> 409, ValidationError -> 400,
AllocationConflictError -> 409.
"""


class CMSServiceError(Exception):
    """Base exception for CMS service errors."""

    status_code = 500
    error = 'Internal Server Error'

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class NotFoundError(CMSServiceError):
    """Raised when a referenced record does not exist."""

    status_code = 404
    error = 'Not Found'


class InvalidStateError(CMSServiceError):
    """Raised when a workflow transition is not allowed from the current state."""

    status_code = 409
    error = 'Conflict'


class ValidationError(CMSServiceError):
    """Raised when request input is malformed."""

    status_code = 400
    error = 'Bad Request'


class AllocationConflictError(CMSServiceError):
    """Raised when a playlist kept changing under an allocation attempt."""

    status_code = 409
    error = 'Conflict'
