"""
Exception hierarchy for the authorization engine.

Only the Grant Store boundary (fetch and mutate) raises these. The
evaluator converts every failure into a safe deny before it reaches
callers.
"""


class AuthorizationError(Exception):
    """Base exception for authorization engine errors."""

    status_code = 500

    def __init__(self, message, details=None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NetworkError(AuthorizationError):
    """Transient transport failure (connection, timeout, 5xx). Retryable."""
    status_code = 503


class AuthExpired(AuthorizationError):
    """Raised when the actor's credentials are no longer valid."""
    status_code = 401


class NotAMember(AuthorizationError):
    """Raised when the actor holds no membership in the requested tenant."""
    status_code = 404


class ValidationError(AuthorizationError):
    """Raised when a grant or revoke request is malformed."""
    status_code = 400


class PermissionDeniedError(AuthorizationError):
    """Raised when a non owner/admin actor attempts to mutate grants."""
    status_code = 403


class GrantStoreError(AuthorizationError):
    """Raised when the Grant Store answers with an unexpected payload or status."""
    status_code = 502
