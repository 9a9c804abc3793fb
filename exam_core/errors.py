"""Error taxonomy for the exam session core.

Every error carries the HTTP status the API layer reports it with.
Only StorageUnavailable is transient; the rest are terminal for the
calling operation.
"""


class ExamSessionError(Exception):
    status_code = 400

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class NotAvailable(ExamSessionError):
    """Exam is unpublished or outside its start/end window."""

    status_code = 403


class AlreadySubmitted(ExamSessionError):
    """The submission has already been finalized."""

    status_code = 409


class SessionClosed(ExamSessionError):
    """An answer write arrived after the session closed."""

    status_code = 409


class ValidationError(ExamSessionError):
    status_code = 400


class StorageUnavailable(ExamSessionError):
    """Transient backend failure; safe to retry idempotent writes."""

    status_code = 503


class NotFound(ExamSessionError):
    status_code = 404


class PermissionDenied(ExamSessionError):
    status_code = 403
