from __future__ import annotations

import logging
from typing import Mapping, Sequence

from dispenser.errors import NoPermissionsRequested, NotAuthorized, PermissionCeilingExceeded, PermissionNotAllowed
from dispenser.policy.claims import GitHubClaims
from dispenser.policy.permissions import AccessLevel, PermissionGrant, freeze_grant, merge_permissions
from dispenser.policy.rules import AuthorizationRule, describe_rule, matching_rules

logger = logging.getLogger(__name__)


def allowed_permissions(rules: Sequence[AuthorizationRule], claims: GitHubClaims) -> PermissionGrant:
    """Merged ceiling across every rule the claims satisfy (empty if none match)."""
    return merge_permissions(r.permissions for r in matching_rules(rules, claims))


def authorize(
    rules: Sequence[AuthorizationRule],
    claims: GitHubClaims,
    requested: Mapping[str, AccessLevel],
) -> PermissionGrant:
    """
    Validate a permission request against the rules of one target repository.

    All-or-nothing: a single permission that is absent from the merged grant,
    or requested above its ceiling, denies the whole request.

    Returns the requested grant unchanged (never widened to the ceiling).
    """
    if not requested:
        raise NoPermissionsRequested()

    matching = matching_rules(rules, claims)
    if not matching:
        raise NotAuthorized(f"no rule matches claims (sub='{claims.sub}')")

    logger.debug("Matched %d rule(s): %s", len(matching), "; ".join(describe_rule(r) for r in matching))

    allowed = merge_permissions(r.permissions for r in matching)
    for permission, level in requested.items():
        max_level = allowed.get(permission)
        if max_level is None:
            raise PermissionNotAllowed(permission)
        if level > max_level:
            raise PermissionCeilingExceeded(permission, level, max_level)

    return freeze_grant(requested)
