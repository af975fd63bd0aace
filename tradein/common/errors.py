"""Error taxonomy shared by trade-in, credit, and webhook components.

Domain errors are user-facing and never retried automatically. Concurrency
conflicts are a separate kind so callers can re-read and retry the user-level
operation. Provider errors carry a retryable flag that drives worker backoff.
"""


class DomainError(Exception):
    """Synchronous business-rule violation."""

    code = "DOMAIN_ERROR"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code


class NotFoundError(DomainError):
    code = "NOT_FOUND"


class InvalidTransitionError(DomainError):
    code = "INVALID_TRANSITION"


class AuthorizationError(DomainError):
    code = "FORBIDDEN"


class ValidationError(DomainError):
    code = "VALIDATION_FAILED"


class CreditValidationError(ValidationError):
    code = "CREDIT_NOTE_INVALID"


class InsufficientCreditError(DomainError):
    code = "INSUFFICIENT_CREDIT"


class CreditLockConflictError(DomainError):
    """The same customer already holds this note in another active session."""

    code = "CREDIT_NOTE_LOCKED"


class NoPhotosError(DomainError):
    code = "NO_PHOTOS"


class ConcurrencyConflictError(Exception):
    """Optimistic version check failed; the row changed since it was read."""

    code = "CONCURRENCY_CONFLICT"

    def __init__(self, entity: str, entity_id, expected_version: int) -> None:
        super().__init__(
            f"optimistic concurrency conflict for {entity} {entity_id} (expected version {expected_version})"
        )
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version


RETRYABLE_PROVIDER_ERRORS = frozenset(
    {"rate_limited", "service_unavailable", "timeout", "cancelled", "network", "malformed_response"}
)


class AssessmentProviderError(Exception):
    """Categorised failure from an assessment provider."""

    def __init__(self, message: str, kind: str = "upstream_error", retryable: bool | None = None) -> None:
        super().__init__(message)
        self.kind = kind
        self.retryable = kind in RETRYABLE_PROVIDER_ERRORS if retryable is None else retryable
