"""Domain errors raised by the diagnostic chat pipeline.

Routes translate these into HTTP responses; services raise them and never
return partial results in their place.
"""


class DiagnosticChatError(Exception):
    """Base class for all pipeline errors."""


class TurnValidationError(DiagnosticChatError, ValueError):
    """The submitted turn is malformed (blank message, bad session id...)."""


class PatientNotFoundError(DiagnosticChatError):
    """Raised when a referenced patient does not exist."""


class VisitNotFoundError(DiagnosticChatError):
    """Raised when a visit does not exist or belongs to another patient."""


class DuplicateTurnError(DiagnosticChatError):
    """A turn with the same idempotency key was already recorded."""


class UpstreamUnavailableError(DiagnosticChatError):
    """An external model provider could not be reached or returned garbage."""


class CompletionUnavailableError(UpstreamUnavailableError):
    """The completion provider failed to produce a reply."""


class EmbeddingUnavailableError(UpstreamUnavailableError):
    """The embedding provider failed to produce a vector."""


class PersistenceError(DiagnosticChatError):
    """A database write failed; earlier committed steps are kept."""

    def __init__(self, message: str, step: str | None = None):
        super().__init__(message)
        self.step = step
