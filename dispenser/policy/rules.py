from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, Sequence, Tuple

from dispenser.errors import ConfigurationError
from dispenser.policy.claims import ClaimField, GitHubClaims, get_value
from dispenser.policy.permissions import AccessLevel, freeze_grant, parse_grant
from dispenser.policy.wildcard import Wildcard, compile_all


@dataclass(frozen=True)
class AuthorizationRule:
    """
    Claim constraints plus the permissions granted when they all hold.

    - AND across fields, OR across the wildcards of one field.
    - A rule with no fields matches every claim set.
    """

    fields: Mapping[str, Tuple[Wildcard, ...]] = field(default_factory=lambda: MappingProxyType({}))
    permissions: Mapping[str, AccessLevel] = field(default_factory=lambda: freeze_grant({}))
    name: str = ""

    @classmethod
    def build(
        cls,
        fields: Mapping[str, Sequence[str]],
        permissions: Mapping[str, Any] | None = None,
        *,
        name: str = "",
    ) -> "AuthorizationRule":
        """
        Build a validated rule: field names must be declared claims, patterns must compile.

        A plain string for a field is shorthand for a one-element list.
        """
        compiled = {}
        for raw_name, raw_patterns in (fields or {}).items():
            key = ClaimField.parse(raw_name)
            if key in compiled:
                raise ConfigurationError(f"claim field '{key}' is listed more than once")
            patterns = [raw_patterns] if isinstance(raw_patterns, str) else list(raw_patterns or [])
            if not patterns:
                raise ConfigurationError(f"claim field '{key}' must list at least one pattern")
            compiled[key] = compile_all(patterns)
        return cls(
            fields=MappingProxyType(compiled),
            permissions=parse_grant(permissions or {}),
            name=name,
        )

    @property
    def is_unconstrained(self) -> bool:
        return not self.fields


def matches(rule: AuthorizationRule, claims: GitHubClaims) -> bool:
    for field_name, wildcards in rule.fields.items():
        value = get_value(claims, field_name)
        if not any(w.matches(value) for w in wildcards):
            return False
    return True


def matching_rules(rules: Iterable[AuthorizationRule], claims: GitHubClaims) -> List[AuthorizationRule]:
    return [r for r in (rules or []) if matches(r, claims)]


def any_matches(rules: Iterable[AuthorizationRule], claims: GitHubClaims) -> bool:
    return bool(matching_rules(rules, claims))


def describe_rule(rule: AuthorizationRule) -> str:
    """Short, log-friendly rendering of a rule's constraints."""
    if rule.is_unconstrained:
        return "<any claims>"
    bits = []
    for field_name, wildcards in sorted(rule.fields.items()):
        bits.append(f"{field_name}=" + "|".join(str(w) for w in wildcards))
    return " ".join(bits)
