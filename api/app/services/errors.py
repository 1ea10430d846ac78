class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation collides with concurrent or existing state."""


class RepositoryInvalidTransitionError(RepositoryError):
    """Raised when a status change violates the lifecycle rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidAmountError(RepositoryValidationError):
    """Raised when a fee base amount is negative or not finite."""


class InvalidRateError(RepositoryValidationError):
    """Raised when a fee rate falls outside 0..100 percent."""
