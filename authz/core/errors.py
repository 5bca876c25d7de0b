"""
Domain exceptions.

Services and the RBAC layer raise these; `authz.main` maps each one to
an HTTP response.  Nothing below this module knows about status codes.
"""

import enum
from collections.abc import Iterable


class AuthFailure(str, enum.Enum):
    MISSING_TOKEN = "missing_token"
    INVALID_TOKEN = "invalid_token"
    EXPIRED = "expired"
    REVOKED = "revoked"
    PRINCIPAL_NOT_FOUND = "principal_not_found"
    PRINCIPAL_INACTIVE = "principal_inactive"
    INVALID_CREDENTIALS = "invalid_credentials"


class AuthzError(Exception):
    """Base class for every error raised by this package."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class AuthenticationError(AuthzError):
    """Missing, malformed, expired or revoked credential, or unusable principal."""

    def __init__(self, detail: str, reason: AuthFailure = AuthFailure.INVALID_TOKEN):
        super().__init__(detail)
        self.reason = reason


class AuthorizationError(AuthzError):
    """Valid principal, insufficient permission for (resource, action)."""

    def __init__(self, resource: str, action: str, detail: str = "Insufficient permissions"):
        super().__init__(detail)
        self.resource = resource
        self.action = action


class RoleRequiredError(AuthzError):
    def __init__(self, roles: Iterable[str]):
        super().__init__("Insufficient role permissions")
        self.roles = list(roles)


class NotFoundError(AuthzError):
    pass


class ConflictError(AuthzError):
    """Duplicate name/email, entity still referenced, or forbidden self-action."""


class InvalidReferenceError(AuthzError):
    """A referenced role or permission id does not exist (or is inactive)."""


class TokenGenerationError(AuthzError):
    """Signing failed.  Points at misconfiguration, not at a bad credential."""
