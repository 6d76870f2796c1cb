"""
Identity service: domain-specific failures.

Each class presets its failure kind and default message so call sites only
say what went wrong. ``ojtech_shared.errors.map_failure`` turns them into
responses; nothing here knows about HTTP.
"""
from ojtech_shared.errors import (
    AuthenticationFailed,
    BadRequest,
    ResourceNotFound,
)


# ── Lookup ────────────────────────────────────────────────────────────────────

class IdentityNotFound(ResourceNotFound):
    """Same message whichever lookup (email or username) missed."""

    def __init__(self, identifier: str) -> None:
        self.identifier = identifier
        super().__init__(f"User not found with username or email: {identifier}")


# ── Registration ──────────────────────────────────────────────────────────────

class UsernameTaken(BadRequest):
    default_message = "Username is already taken!"


class EmailAlreadyInUse(BadRequest):
    default_message = "Email is already in use!"


class UnknownRoleRequested(BadRequest):
    def __init__(self, role: str) -> None:
        super().__init__(f"Role '{role}' cannot be requested at sign-up")


# ── Authentication ────────────────────────────────────────────────────────────

class AccountDisabled(AuthenticationFailed):
    default_message = "User account is disabled"


class OAuth2AuthenticationError(AuthenticationFailed):
    """Explicit failure raised by the OAuth2 flow itself; never re-wrapped."""

    default_message = "OAuth2 authentication failed"


class InvalidOAuth2State(OAuth2AuthenticationError):
    default_message = "Authorization request not found or expired"


class AuthenticationServiceError(AuthenticationFailed):
    """
    Any unexpected failure inside the OAuth2 flow, re-raised so the standard
    authentication failure path runs. The original is kept as ``__cause__``.
    """

    default_message = "Authentication service failure"


class ProvisioningConflict(AuthenticationServiceError):
    """A concurrent first login won the insert and could not be re-read."""

    default_message = "Account is being created by a concurrent sign-in, please retry"
    retryable = True


class UnsupportedProvider(BadRequest):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"Sorry! Login with {provider} is not supported yet.")


# ── Deployment misconfiguration ───────────────────────────────────────────────

class RoleCatalogError(RuntimeError):
    """A required role is missing from the roles table. Fatal, maps to 500."""

    def __init__(self, role: str) -> None:
        super().__init__(f"Error: Role {role} is not found.")
