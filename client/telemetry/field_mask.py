"""
Field mask: which top-level payload sections a request needs.

The cache forwards the mask to the backend verbatim and never
interprets it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


@dataclass(frozen=True)
class FieldMask:
    """
    Immutable set of top-level section names.

    include_all=True means "no filter" and serializes to no query
    parameter at all.
    """

    sections: frozenset[str] = frozenset()
    include_all: bool = False

    @staticmethod
    def all() -> FieldMask:
        return FieldMask(include_all=True)

    @staticmethod
    def of(sections: Iterable[str]) -> FieldMask:
        cleaned = frozenset(s.strip().lower() for s in sections if s and s.strip())
        return FieldMask(sections=cleaned)

    @staticmethod
    def parse(raw: str | None) -> FieldMask:
        """Parse a comma-separated list; None or blank means all fields."""
        if raw is None or not raw.strip():
            return FieldMask.all()
        return FieldMask.of(raw.split(","))

    def includes(self, section: str) -> bool:
        return self.include_all or section.lower() in self.sections

    def to_query(self) -> str | None:
        """Comma list for the `fields` query parameter, or None for all."""
        if self.include_all:
            return None
        return ",".join(sorted(self.sections))
