from __future__ import annotations

import enum
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping

from dispenser.errors import ConfigurationError

PermissionGrant = Mapping[str, "AccessLevel"]


class AccessLevel(enum.Enum):
    """GitHub App permission level. Ordering is by ordinal: read < write < admin."""

    READ = 1
    WRITE = 2
    ADMIN = 3

    @classmethod
    def parse(cls, name: str) -> "AccessLevel":
        level = _BY_NAME.get(name) if isinstance(name, str) else None
        if level is None:
            raise ConfigurationError(f"'{name}' is not a valid access level (expected one of: read, write, admin)")
        return level

    @property
    def label(self) -> str:
        return self.name.lower()

    def __str__(self) -> str:
        return self.label

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.value < other.value

    def __le__(self, other: Any) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.value <= other.value

    def __gt__(self, other: Any) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.value > other.value

    def __ge__(self, other: Any) -> bool:
        if not isinstance(other, AccessLevel):
            return NotImplemented
        return self.value >= other.value


_BY_NAME: Dict[str, AccessLevel] = {lvl.label: lvl for lvl in AccessLevel}


def freeze_grant(grant: Mapping[str, AccessLevel]) -> PermissionGrant:
    return MappingProxyType(dict(grant))


def parse_grant(raw: Mapping[str, Any]) -> PermissionGrant:
    """Parse `{"contents": "write"}` style config into a grant."""
    if raw is None:
        return freeze_grant({})
    if not isinstance(raw, Mapping):
        raise ConfigurationError("permissions must be a mapping of permission name -> access level")
    out: Dict[str, AccessLevel] = {}
    for name, level in raw.items():
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError(f"invalid permission name '{name}'")
        if name.strip() in out:
            raise ConfigurationError(f"permission '{name.strip()}' is listed more than once")
        out[name.strip()] = level if isinstance(level, AccessLevel) else AccessLevel.parse(level)
    return freeze_grant(out)


def merge_permissions(grants: Iterable[Mapping[str, AccessLevel]]) -> PermissionGrant:
    """Per permission name, keep the highest level any grant mentions."""
    merged: Dict[str, AccessLevel] = {}
    for grant in grants:
        for name, level in grant.items():
            current = merged.get(name)
            if current is None or level > current:
                merged[name] = level
    return freeze_grant(merged)


def grant_to_wire(grant: Mapping[str, AccessLevel]) -> Dict[str, str]:
    return {name: level.label for name, level in sorted(grant.items())}
