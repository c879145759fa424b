"""
Export one agent's share of a division as an occupancy grid.

The exported grid has the same size, resolution and origin as the source
map.  Cells owned by the agent keep their source value; every other cell is
marked ``CELL_OCCUPIED`` so planners treat it as off-limits.
"""

import logging

import numpy as np

from area_division.errors import InvalidInputError
from area_division.grid import CELL_OCCUPIED, OccupancyGrid
from area_division.partition import Assignment

logger = logging.getLogger("AreaDivision.Export")

__all__ = ["extract_region"]


def extract_region(assignment: Assignment, grid: OccupancyGrid, agent_id: str) -> OccupancyGrid:
    """Return the region of *grid* assigned to *agent_id*.

    An agent that is not part of *assignment* gets an all-occupied grid.

    Raises:
        InvalidInputError: If the assignment was computed for a grid of a
            different size.
    """
    if (assignment.width, assignment.height) != (grid.width, grid.height):
        raise InvalidInputError(
            f"assignment is {assignment.width}x{assignment.height}, "
            f"grid is {grid.width}x{grid.height}"
        )

    data = np.full(grid.size, CELL_OCCUPIED, dtype=np.int8)
    cells = assignment.cells_of(agent_id)
    if cells.size == 0:
        logger.debug(f"No cells assigned to {agent_id}")
    data[cells] = grid.data[cells]
    return grid.with_data(data)
