"""
Error hierarchy for the token dispenser.

Every error carries two messages:
- `internal_message`: what we log (may name the failing rule condition)
- `external_message`: what the HTTP caller sees (never reveals policy details)
"""
from __future__ import annotations

from typing import Optional

AUTHZ_EXTERNAL_MESSAGE = "not authorized for the requested permissions"
GENERIC_EXTERNAL_MESSAGE = "something went wrong; please contact the token dispenser administrators"


class DispenserError(Exception):
    """Base error: internal message for logs, external message + status for callers."""

    status_code: int = 500
    default_external_message: str = GENERIC_EXTERNAL_MESSAGE

    def __init__(
        self,
        internal_message: str,
        *,
        external_message: Optional[str] = None,
        status_code: Optional[int] = None,
        wrapped: Optional[BaseException] = None,
    ) -> None:
        super().__init__(internal_message)
        self.internal_message = internal_message
        self.external_message = external_message or self.default_external_message
        if status_code is not None:
            self.status_code = status_code
        self.wrapped = wrapped

    def __str__(self) -> str:
        if self.wrapped is None:
            return self.internal_message
        return f"{self.internal_message}: {self.wrapped}"


# ---- Configuration (fatal at load time) ----


class ConfigurationError(DispenserError):
    """Bad policy or service configuration; the service must refuse to start."""


class UnknownField(ConfigurationError):
    def __init__(self, field: str) -> None:
        super().__init__(f"unknown claim field '{field}'")
        self.field = field


# ---- Request / authentication ----


class InvalidRequest(DispenserError):
    status_code = 400
    default_external_message = "invalid request"


class VerificationError(DispenserError):
    status_code = 400
    default_external_message = (
        "invalid OIDC token; make sure to request the token from a GitHub Actions workflow"
    )


class InvalidIssuer(VerificationError):
    default_external_message = "invalid issuer; make sure to request the token from a GitHub Actions workflow"


# ---- Authorization (uniform external message) ----


class AuthorizationError(DispenserError):
    status_code = 401
    default_external_message = AUTHZ_EXTERNAL_MESSAGE


class NotAuthorized(AuthorizationError):
    """No rule matches the caller's claims (or the owner check failed)."""


class NoPermissionsRequested(AuthorizationError):
    default_external_message = "no permissions requested; at least one permission must be requested explicitly"

    def __init__(self) -> None:
        super().__init__("no permissions requested")


class PermissionNotAllowed(AuthorizationError):
    def __init__(self, permission: str) -> None:
        super().__init__(f"permission '{permission}' is not granted by any matching rule")
        self.permission = permission


class PermissionCeilingExceeded(AuthorizationError):
    def __init__(self, permission: str, requested_level, max_level) -> None:  # type: ignore[no-untyped-def]
        super().__init__(
            f"permission '{permission}' requested at '{requested_level}' but matching rules allow at most '{max_level}'"
        )
        self.permission = permission
        self.requested_level = requested_level
        self.max_level = max_level


# ---- Collaborator failures ----


class RuleLookupError(DispenserError):
    """The rule repository couldn't produce rules for a target."""


class MintError(DispenserError):
    status_code = 502
    default_external_message = "couldn't mint a token for the repository"
