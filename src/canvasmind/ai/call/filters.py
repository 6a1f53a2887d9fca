"""Include/exclude filter expressions for tools and context providers.

Syntax (case-insensitive, tokens separated by commas or spaces):

* empty expression: include everything
* ``*``: include everything
* ``name`` or ``+name``: include ``name``
* ``-name``: exclude ``name``
* ``-*`` anywhere: exclude everything
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

__all__ = ["Filter", "parse_filter", "canonicalize_filter", "EXCLUDE_ALL", "INCLUDE_ALL"]

LOGGER = logging.getLogger(__name__)

EXCLUDE_ALL = "-*"
INCLUDE_ALL = "*"
_SPLIT = re.compile(r"[,\s]+")


@dataclass(slots=True, frozen=True)
class Filter:
    """Parsed filter expression."""

    exclude_all: bool = False
    include_all: bool = True
    include: frozenset[str] = frozenset()
    exclude: frozenset[str] = frozenset()

    @classmethod
    def parse(cls, raw: str | None) -> Filter:
        if raw is None or not raw.strip():
            return cls()
        parts = [part for part in _SPLIT.split(raw.strip()) if part]
        if EXCLUDE_ALL in parts:
            return cls(exclude_all=True, include_all=False)
        includes = [part.lstrip("+").lower() for part in parts if not part.startswith("-")]
        excludes = [part[1:].lower() for part in parts if part.startswith("-") and part != EXCLUDE_ALL]
        include_all = INCLUDE_ALL in includes or not includes
        parsed = cls(
            exclude_all=False,
            include_all=include_all,
            include=frozenset(part for part in includes if part and part != INCLUDE_ALL),
            exclude=frozenset(part for part in excludes if part and part != INCLUDE_ALL),
        )
        LOGGER.debug(
            "Parsed filter %r: include_all=%s include=%s exclude=%s",
            raw,
            parsed.include_all,
            sorted(parsed.include),
            sorted(parsed.exclude),
        )
        return parsed

    def should_include(self, key: str) -> bool:
        name = (key or "").lower()
        if self.exclude_all:
            return False
        if name in self.exclude:
            return False
        if self.include_all:
            return True
        return name in self.include

    def canonical(self) -> str:
        """Render the normalized expression."""
        if self.exclude_all:
            return EXCLUDE_ALL
        tokens = [INCLUDE_ALL] if self.include_all else sorted(self.include)
        tokens.extend(f"-{name}" for name in sorted(self.exclude))
        return ", ".join(tokens)


def parse_filter(raw: str | None) -> Filter:
    return Filter.parse(raw)


def canonicalize_filter(raw: str | None) -> str:
    return Filter.parse(raw).canonical()
