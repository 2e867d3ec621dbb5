"""
Exception hierarchy for ErrorScope.

Senior Engineering Note:
- Ingestion never lets these escape to the host application
- Analytics failures are isolated per computation
- The API layer maps NotFoundError / InvalidTransitionError to HTTP codes
"""


class ErrorScopeError(Exception):
    """Base class for all ErrorScope errors."""


class InputError(ErrorScopeError):
    """Malformed occurrence report (missing type, unparseable timestamp)."""


class ConcurrencyConflict(ErrorScopeError):
    """Transient contention on a group, link or baseline row. Retried internally."""


class AnalyticsComputationError(ErrorScopeError):
    """A correlation, cascade, baseline or scoring pass failed or timed out."""

    def __init__(self, analysis: str, message: str):
        self.analysis = analysis
        super().__init__(f"{analysis}: {message}")


class ConfigurationError(ErrorScopeError):
    """Invalid configuration. Raised at startup, fail fast."""


class NotFoundError(ErrorScopeError):
    """Requested record does not exist."""

    def __init__(self, entity: str, identifier):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} {identifier} not found")


class InvalidTransitionError(ErrorScopeError):
    """Workflow transition not allowed from the group's current status."""
