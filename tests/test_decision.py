from __future__ import annotations

import pytest

from dispenser.errors import (
    AUTHZ_EXTERNAL_MESSAGE,
    NoPermissionsRequested,
    NotAuthorized,
    PermissionCeilingExceeded,
    PermissionNotAllowed,
)
from dispenser.policy.claims import GitHubClaims
from dispenser.policy.decision import allowed_permissions, authorize
from dispenser.policy.permissions import AccessLevel
from dispenser.policy.rules import AuthorizationRule

CLAIMS = GitHubClaims(sub="repo:example/foo", environment="prod", repository_owner="example")

READ_RULE = AuthorizationRule.build({"sub": "repo:example/*"}, {"contents": "read", "issues": "write"})
WRITE_RULE = AuthorizationRule.build({"sub": "repo:example/foo", "environment": "prod"}, {"contents": "write"})
DEV_ADMIN_RULE = AuthorizationRule.build({"sub": "repo:example/foo", "environment": "dev"}, {"contents": "admin"})

RULES = [READ_RULE, WRITE_RULE, DEV_ADMIN_RULE]


def test_approves_request_under_merged_ceiling() -> None:
    approved = authorize(RULES, CLAIMS, {"contents": AccessLevel.WRITE})
    assert approved == {"contents": AccessLevel.WRITE}


def test_returns_request_unchanged_not_the_ceiling() -> None:
    approved = authorize(RULES, CLAIMS, {"contents": AccessLevel.READ})
    assert approved == {"contents": AccessLevel.READ}
    assert "issues" not in approved


def test_rejects_request_above_ceiling() -> None:
    # DEV_ADMIN_RULE doesn't match prod claims, so admin is out of reach.
    with pytest.raises(PermissionCeilingExceeded) as ei:
        authorize(RULES, CLAIMS, {"contents": AccessLevel.ADMIN})
    assert ei.value.permission == "contents"
    assert ei.value.requested_level is AccessLevel.ADMIN
    assert ei.value.max_level is AccessLevel.WRITE


def test_rejects_permission_no_rule_grants() -> None:
    with pytest.raises(PermissionNotAllowed) as ei:
        authorize(RULES, CLAIMS, {"packages": AccessLevel.READ})
    assert ei.value.permission == "packages"


def test_all_or_nothing() -> None:
    with pytest.raises(PermissionNotAllowed):
        authorize(RULES, CLAIMS, {"contents": AccessLevel.READ, "packages": AccessLevel.READ})


def test_no_matching_rule() -> None:
    other = GitHubClaims(sub="repo:someone-else/foo", environment="prod")
    with pytest.raises(NotAuthorized):
        authorize(RULES, other, {"contents": AccessLevel.READ})
    with pytest.raises(NotAuthorized):
        authorize([], CLAIMS, {"contents": AccessLevel.READ})


def test_empty_request_is_rejected_regardless_of_rules() -> None:
    with pytest.raises(NoPermissionsRequested):
        authorize(RULES, CLAIMS, {})
    with pytest.raises(NoPermissionsRequested):
        authorize([], CLAIMS, {})


def test_authorization_denials_share_one_external_message() -> None:
    denials = [
        lambda: authorize(RULES, CLAIMS, {"contents": AccessLevel.ADMIN}),
        lambda: authorize(RULES, CLAIMS, {"packages": AccessLevel.READ}),
        lambda: authorize([], CLAIMS, {"contents": AccessLevel.READ}),
    ]
    for deny in denials:
        with pytest.raises(Exception) as ei:
            deny()
        assert ei.value.external_message == AUTHZ_EXTERNAL_MESSAGE
        assert ei.value.status_code == 401


def test_scenario_merge_read_and_write() -> None:
    rules = [
        AuthorizationRule.build({"sub": "repo:example/foo"}, {"contents": "read"}),
        AuthorizationRule.build({"environment": "prod"}, {"contents": "write"}),
    ]
    assert authorize(rules, CLAIMS, {"contents": AccessLevel.WRITE}) == {"contents": AccessLevel.WRITE}
    with pytest.raises(PermissionCeilingExceeded):
        authorize(rules, CLAIMS, {"contents": AccessLevel.ADMIN})


def test_allowed_permissions_reports_merged_ceiling() -> None:
    assert allowed_permissions(RULES, CLAIMS) == {"contents": AccessLevel.WRITE, "issues": AccessLevel.WRITE}
    assert allowed_permissions([], CLAIMS) == {}


def test_repeated_calls_are_identical() -> None:
    requested = {"contents": AccessLevel.WRITE}
    results = [authorize(RULES, CLAIMS, requested) for _ in range(5)]
    assert all(r == results[0] for r in results)
    assert requested == {"contents": AccessLevel.WRITE}
