"""Typed failures raised by the services layer.

Each error carries the HTTP status the API layer renders it with, so routes
never translate exceptions by hand.
"""


class FileManagerError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)


class NotFoundError(FileManagerError):
    """Referenced folder, file or job does not exist."""

    status_code = 404


class ForbiddenError(FileManagerError):
    """Referenced entity exists but belongs to another user."""

    status_code = 403


class ConflictError(FileManagerError):
    """Structural violation, e.g. duplicate sibling name or root deletion."""

    status_code = 409


class ValidationError(FileManagerError):
    """Malformed input: empty name, bad size, disallowed MIME type."""

    status_code = 422


class StorageError(FileManagerError):
    """Blob storage or persistence collaborator failed. Retryable by the caller."""

    status_code = 502


class JobFailure(FileManagerError):
    """Terminal failure of an archive job. Recorded on the job, never returned to the submitter."""

    status_code = 500
