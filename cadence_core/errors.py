class CadenceError(Exception):
    """Base error for Cadence."""


class RecoverableError(CadenceError):
    """Indicates the operation can be retried safely."""


class PermanentError(CadenceError):
    """Indicates the operation should not be retried."""


class ValidationError(CadenceError):
    """Input validation failure."""


class InvalidStateError(ValidationError):
    """Requested transition is not allowed from the current status."""

    def __init__(self, message: str, *, current: str | None = None) -> None:
        super().__init__(message)
        self.current = current


class RolloutNotFoundError(ValidationError):
    """No rollout with the requested id."""


class StaleStateError(RecoverableError):
    """The stored record changed since it was read."""


class LeaseUnavailableError(RecoverableError):
    """The lease backend could not be reached."""


class RolloutConflictError(RecoverableError):
    """An administrative operation lost every retry against concurrent work."""


class RepositoryUnavailableError(RecoverableError):
    """A state document could not be read or written."""
