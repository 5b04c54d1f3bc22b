from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Pattern, Tuple

from dispenser.errors import ConfigurationError


@dataclass(frozen=True)
class Wildcard:
    """
    Glob-style pattern where `*` is the only special character.

    Matching is anchored: the whole value must match, never a substring.
    """

    pattern: str
    regex: Pattern[str]

    @classmethod
    def compile(cls, pattern: str) -> "Wildcard":
        if not isinstance(pattern, str):
            raise ConfigurationError(f"wildcard pattern must be a string, got {type(pattern).__name__}")
        # Escape everything, then re-open the escaped `*` as "any sequence".
        expanded = re.escape(pattern).replace(r"\*", ".*")
        try:
            regex = re.compile(f"^{expanded}$", re.DOTALL)
        except re.error as e:
            raise ConfigurationError(f"invalid wildcard pattern '{pattern}'", wrapped=e) from e
        return cls(pattern=pattern, regex=regex)

    def matches(self, value: str) -> bool:
        return self.regex.fullmatch(value or "") is not None

    def __str__(self) -> str:
        return self.pattern


def compile_all(patterns: Iterable[str]) -> Tuple[Wildcard, ...]:
    return tuple(Wildcard.compile(p) for p in patterns)
