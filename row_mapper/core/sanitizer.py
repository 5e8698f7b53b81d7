"""Guard for ``${}`` text substitution.

``${}`` values are spliced into the SQL text unescaped. When a substitution
pattern is configured, every rendered value must match it completely, which
is the usual way to restrict ``${}`` to identifiers or sort directions:

    SubstitutionGuard(r"[A-Za-z_][A-Za-z0-9_.]*( (?i:asc|desc))?")

**IMPORTANT SECURITY WARNING:**
    The guard is defense in depth, not a substitute for ``#{}`` parameters.
    Never route user-provided values through ``${}`` without one.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from row_mapper.core.exceptions import InvalidSubstitutionError


@dataclass(frozen=True)
class SubstitutionGuard:
    """Rejects rendered ``${}`` values that do not fully match *pattern*.

    Attributes:
        pattern: Regular expression every substituted value must match.
        allow_empty: Accept the empty string produced by a null value.
    """

    pattern: str
    allow_empty: bool = True
    _compiled: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "_compiled", re.compile(self.pattern))

    def check(self, value: str) -> str:
        """Return *value* unchanged, or raise InvalidSubstitutionError."""
        if value == "" and self.allow_empty:
            return value
        if self._compiled.fullmatch(value) is None:
            raise InvalidSubstitutionError(value, self.pattern)
        return value
