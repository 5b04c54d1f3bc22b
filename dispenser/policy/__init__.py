"""Claims-based authorization policy engine.

Pure functions only:
- which rules a verified claim set satisfies
- the merged permission ceiling of those rules
- whether a permission request fits under that ceiling
"""
from __future__ import annotations

from dispenser.policy.claims import CLAIM_FIELDS, ClaimField, GitHubClaims, get_value
from dispenser.policy.decision import allowed_permissions, authorize
from dispenser.policy.permissions import AccessLevel, PermissionGrant, grant_to_wire, merge_permissions, parse_grant
from dispenser.policy.rules import AuthorizationRule, any_matches, matches, matching_rules
from dispenser.policy.wildcard import Wildcard

__all__ = [
    "AccessLevel",
    "AuthorizationRule",
    "CLAIM_FIELDS",
    "ClaimField",
    "GitHubClaims",
    "PermissionGrant",
    "Wildcard",
    "allowed_permissions",
    "any_matches",
    "authorize",
    "get_value",
    "grant_to_wire",
    "matches",
    "matching_rules",
    "merge_permissions",
    "parse_grant",
]
