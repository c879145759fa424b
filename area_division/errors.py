"""Exception types raised by the area division core.

Feed handlers (identity, pose, swarm positions, map) never let these escape:
they log and drop the offending update.  Pure helpers such as
:func:`area_division.grid.to_grid` raise them so callers can decide.
"""

from __future__ import annotations


class AreaDivisionError(Exception):
    """Base class for all area division errors."""


class InvalidInputError(AreaDivisionError, ValueError):
    """Malformed identity, non-finite position or inconsistent grid."""


class NotReadyError(AreaDivisionError):
    """A region was requested before identity, pose or map were known."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(f"Area division not ready, waiting for: {', '.join(self.missing)}")
