"""Typed errors raised by the services and mapped to HTTP responses in main.py."""


class ExamEngineError(Exception):
    """Base class for every error surfaced to a caller."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(ExamEngineError):
    status_code = 404


class ConflictError(ExamEngineError):
    status_code = 409


class ForbiddenError(ExamEngineError):
    status_code = 403


class NotInTimeError(ExamEngineError):
    """The exam window is not open yet or has already closed."""

    status_code = 409


class ValidationError(ExamEngineError):
    """Answer shape, length or precondition check failed."""

    status_code = 400


class ServerError(ExamEngineError):
    """An internal invariant was broken."""

    status_code = 500


class ExternalServiceError(ServerError):
    """The external challenge platform could not be reached or answered garbage.

    Safe to retry.
    """

    status_code = 502
