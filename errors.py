"""Error kinds raised by the model, store and storage layers."""


class FitnessLogError(Exception):
    """Base class for all errors raised by the fitness log core."""


class ValidationError(FitnessLogError, ValueError):
    """Input is malformed, incomplete or out of range."""


class NotFoundError(FitnessLogError, LookupError):
    """No entity with the requested id exists."""


class PermissionDeniedError(FitnessLogError, PermissionError):
    """Attempt to alter a built-in catalogue entry."""


class FormatError(ValidationError):
    """An import document does not have the expected shape."""


class StorageError(FitnessLogError):
    """The underlying durable write or read failed."""


class PartialImportError(FitnessLogError):
    """An import failed part-way; already applied records are kept."""

    def __init__(self, message: str, applied: dict[str, int], cause: BaseException) -> None:
        super().__init__(message)
        self.applied = dict(applied)
        self.cause = cause
