"""
Occupancy grids and the world-to-grid coordinate mapper.

Cell values follow the ``nav_msgs/OccupancyGrid`` convention used by the
map feed::

    CELL_UNKNOWN  = -1
    CELL_FREE     =  0
    CELL_OCCUPIED = 100

Cells are stored row-major in a flat ``int8`` array, so the cell at
``(col, row)`` lives at ``row * width + col``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

import numpy as np

from area_division.errors import InvalidInputError

CELL_UNKNOWN = -1
CELL_FREE = 0
CELL_OCCUPIED = 100

__all__ = [
    "CELL_FREE",
    "CELL_OCCUPIED",
    "CELL_UNKNOWN",
    "GridPosition",
    "OccupancyGrid",
    "to_grid",
]

GridPosition = tuple[int, int]


def _finite_pair(value, name: str) -> tuple[float, float]:
    try:
        x, y = (float(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"{name} must be an (x, y) pair, got {value!r}") from exc
    if not (math.isfinite(x) and math.isfinite(y)):
        raise InvalidInputError(f"{name} must be finite, got ({x}, {y})")
    return x, y


def to_grid(world, origin, resolution: float) -> GridPosition:
    """Convert a world position to integer grid coordinates.

    Computes ``round((world - origin) / resolution)`` on each axis.  The
    result is not clamped: poses outside the mapped area produce coordinates
    outside the grid.

    Raises:
        InvalidInputError: On non-finite input, a non-positive resolution, or
            a position too far from the origin to express in cells.
    """
    wx, wy = _finite_pair(world, "world position")
    ox, oy = _finite_pair(origin, "origin")
    resolution = float(resolution)
    if not math.isfinite(resolution) or resolution <= 0:
        raise InvalidInputError(f"resolution must be positive and finite, got {resolution}")
    col = (wx - ox) / resolution
    row = (wy - oy) / resolution
    if not (math.isfinite(col) and math.isfinite(row)):
        raise InvalidInputError(f"world position ({wx}, {wy}) overflows the grid frame")
    return int(round(col)), int(round(row))


@dataclass(frozen=True, eq=False)
class OccupancyGrid:
    """An immutable occupancy grid snapshot."""

    width: int
    height: int
    resolution: float
    origin: tuple[float, float]
    data: np.ndarray = field(repr=False)

    def __post_init__(self) -> None:
        if int(self.width) <= 0 or int(self.height) <= 0:
            raise InvalidInputError(
                f"grid size must be positive, got {self.width}x{self.height}"
            )
        res = float(self.resolution)
        if not math.isfinite(res) or res <= 0:
            raise InvalidInputError(f"resolution must be positive and finite, got {res}")
        origin = _finite_pair(self.origin, "origin")

        raw = np.asarray(self.data).reshape(-1)
        if raw.size != int(self.width) * int(self.height):
            raise InvalidInputError(
                f"grid data has {raw.size} cells, expected "
                f"{int(self.width) * int(self.height)}"
            )
        if raw.dtype.kind not in "iuf":
            raise InvalidInputError(f"grid data must be numeric, got dtype {raw.dtype}")
        # Check before the int8 cast, which would wrap out-of-range values
        bad = (raw < CELL_UNKNOWN) | (raw > CELL_OCCUPIED) | (raw != np.round(raw))
        if raw.size and bad.any():
            first = raw[np.flatnonzero(bad)[0]]
            raise InvalidInputError(
                f"grid data holds {int(np.count_nonzero(bad))} cell value(s) outside "
                f"{CELL_UNKNOWN}..{CELL_OCCUPIED} (e.g. {first})"
            )
        data = raw.astype(np.int8)
        data.setflags(write=False)

        object.__setattr__(self, "width", int(self.width))
        object.__setattr__(self, "height", int(self.height))
        object.__setattr__(self, "resolution", res)
        object.__setattr__(self, "origin", origin)
        object.__setattr__(self, "data", data)

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return self.width * self.height

    def index(self, col: int, row: int) -> int:
        return row * self.width + col

    def contains(self, pos: GridPosition) -> bool:
        col, row = pos
        return 0 <= col < self.width and 0 <= row < self.height

    def world_to_grid(self, x: float, y: float) -> GridPosition:
        return to_grid((x, y), self.origin, self.resolution)

    def same_geometry(self, other: OccupancyGrid | None) -> bool:
        """True if *other* has the same size, resolution and origin."""
        if other is None:
            return False
        return (
            self.width == other.width
            and self.height == other.height
            and self.resolution == other.resolution
            and self.origin == other.origin
        )

    def value_at(self, col: int, row: int) -> int:
        return int(self.data[self.index(col, row)])

    def traversable_mask(self) -> np.ndarray:
        """Boolean mask of free cells, flat and row-major."""
        return self.data == CELL_FREE

    def traversable_count(self) -> int:
        return int(np.count_nonzero(self.traversable_mask()))

    def with_data(self, data) -> OccupancyGrid:
        """Return a congruent grid carrying different cell values."""
        return OccupancyGrid(
            width=self.width,
            height=self.height,
            resolution=self.resolution,
            origin=self.origin,
            data=data,
        )

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "resolution": self.resolution,
            "origin": list(self.origin),
            "data": self.data.tolist(),
        }

    @classmethod
    def from_dict(cls, d: dict) -> OccupancyGrid:
        """Build a grid from a map message dict.

        ``data`` may be a flat list or a list of rows (row 0 first).
        """
        try:
            width = int(d["width"])
            height = int(d["height"])
            data = d["data"]
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidInputError(f"invalid grid message: {exc}") from exc
        return cls(
            width=width,
            height=height,
            resolution=float(d.get("resolution", 1.0)),
            origin=tuple(d.get("origin", (0.0, 0.0))),
            data=np.asarray(data).reshape(-1),
        )

    @classmethod
    def free(cls, width: int, height: int, resolution: float = 1.0, origin=(0.0, 0.0)):
        """An all-free grid, handy for simulation and tests."""
        return cls(
            width=width,
            height=height,
            resolution=resolution,
            origin=tuple(origin),
            data=np.full(width * height, CELL_FREE, dtype=np.int8),
        )
