"""AreaCoordinator — keeps the area division in step with the swarm.

The coordinator owns all mutable state of the area division: the membership
tracker, the latest map and the cached :class:`Assignment`.  Feeds (identity,
own pose, swarm positions, map) and the periodic :meth:`tick` mark the cache
stale whenever the swarm changes; the next :meth:`get_area` recomputes the
division before answering.  Without a change, queries are answered from the
cache.

All public methods are serialised by one lock, so feed callbacks, the tick
thread and queries may run on different threads.
"""

from __future__ import annotations

import collections
import logging
import threading
import time
from typing import Callable, Iterable, Optional

from area_division.config import merge_defaults
from area_division.errors import InvalidInputError, NotReadyError
from area_division.export import extract_region
from area_division.grid import OccupancyGrid
from area_division.partition import Assignment, DivisionSettings, EquitablePartitioner
from area_division.swarm.events import AREA_DIVIDED, MAP_RECEIVED, SwarmEvent
from area_division.swarm.membership import MembershipTracker

logger = logging.getLogger("AreaDivision.Coordinator")

STATE_STABLE = "stable"
STATE_STALE = "stale"


class AssignmentCache:
    """Dirty-bit cache around the last division.

    ``stale`` starts out true and is only cleared by :meth:`store`.  While it
    is set the cached assignment must not be served.
    """

    def __init__(self) -> None:
        self.stale = True
        self.assignment: Optional[Assignment] = None
        self.grid: Optional[OccupancyGrid] = None
        self.reasons: list[str] = ["initial"]
        self.updated_at: Optional[float] = None

    @property
    def valid(self) -> bool:
        return not self.stale and self.assignment is not None

    def invalidate(self, reason: str) -> None:
        if not self.stale:
            logger.debug(f"Area division invalidated: {reason}")
        self.stale = True
        self.reasons.append(reason)

    def store(self, assignment: Assignment, grid: OccupancyGrid) -> None:
        self.assignment = assignment
        self.grid = grid
        self.stale = False
        self.reasons = []
        self.updated_at = time.time()


class AreaCoordinator:
    """Answers "which area is mine?" for a changing swarm.

    Args:
        config: Full config dict; reads the ``area_division`` section.
        publisher: Optional callable receiving this agent's region after
            every division when ``visualize`` is enabled.
    """

    def __init__(
        self,
        config: dict | None = None,
        publisher: Callable[[OccupancyGrid], None] | None = None,
    ) -> None:
        cfg = merge_defaults(config)["area_division"]
        self.visualize = bool(cfg.get("visualize", False))
        self.settings = DivisionSettings.from_config(cfg.get("division"))
        self._publisher = publisher

        self._lock = threading.RLock()
        self._events: collections.deque = collections.deque(maxlen=100)
        self.tracker = MembershipTracker(
            timeout_s=float(cfg.get("swarm_timeout", 5.0)), listener=self._events.append
        )
        self.partitioner = EquitablePartitioner(self.settings)
        self.cache = AssignmentCache()
        self._grid: Optional[OccupancyGrid] = None
        self._divisions = 0

    # ------------------------------------------------------------------
    # Feeds
    # ------------------------------------------------------------------

    def on_identity(self, agent_id) -> None:
        with self._lock:
            if self.tracker.set_identity(agent_id):
                self.cache.invalidate("identity")

    def on_pose(self, x: float, y: float, valid: bool = True) -> None:
        with self._lock:
            if self.tracker.set_pose((x, y), valid=valid):
                self.cache.invalidate("pose")

    def on_swarm_positions(self, positions: Iterable, now: float | None = None) -> None:
        """Handle one swarm-position message (``(agent_id, x, y)`` entries)."""
        with self._lock:
            if self.tracker.observe_many(positions, now=now):
                self.cache.invalidate("membership")

    def on_map(self, grid) -> bool:
        """Replace the map.  Accepts an :class:`OccupancyGrid` or a map dict.

        Returns False if the map was malformed and dropped.
        """
        if not isinstance(grid, OccupancyGrid):
            try:
                grid = OccupancyGrid.from_dict(grid)
            except (InvalidInputError, ValueError) as exc:
                logger.warning(f"Dropped malformed map: {exc}")
                return False
        with self._lock:
            previous = self._grid
            self._grid = grid
            if previous is None:
                self.cache.invalidate("map")
            elif not grid.same_geometry(previous):
                self.cache.invalidate("map geometry")
        self._events.append(
            SwarmEvent(
                MAP_RECEIVED,
                self.tracker.self_id,
                {"width": grid.width, "height": grid.height, "resolution": grid.resolution},
            )
        )
        return True

    def tick(self, now: float | None = None) -> list[str]:
        """Evict silent agents.  Call at the loop rate."""
        with self._lock:
            evicted = self.tracker.sweep(now)
            if evicted:
                self.cache.invalidate("membership")
            return evicted

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> str:
        return STATE_STALE if self.cache.stale else STATE_STABLE

    @property
    def stale(self) -> bool:
        return self.cache.stale

    @property
    def grid(self) -> Optional[OccupancyGrid]:
        return self._grid

    def missing(self) -> list[str]:
        """Inputs still missing before a division is possible."""
        missing = []
        if not self.tracker.self_id:
            missing.append("identity")
        if self.tracker.self_pose is None:
            missing.append("pose")
        if self._grid is None:
            missing.append("map")
        return missing

    def is_ready(self) -> bool:
        return not self.missing()

    def get_area(self, agent_id: str | None = None) -> OccupancyGrid:
        """Return the region assigned to *agent_id* (default: this agent).

        Recomputes the division first if the swarm changed since the last
        one.

        Raises:
            NotReadyError: Identity, pose or map are not known yet.
        """
        with self._lock:
            missing = self.missing()
            if missing:
                raise NotReadyError(missing)
            if not self.cache.valid:
                self.divide()
            target = agent_id or self.tracker.self_id
            return extract_region(self.cache.assignment, self.cache.grid, target)

    def get_assignment(self) -> Assignment:
        """Return the current assignment, recomputing it if stale."""
        with self._lock:
            missing = self.missing()
            if missing:
                raise NotReadyError(missing)
            if not self.cache.valid:
                self.divide()
            return self.cache.assignment

    def divide(self) -> Assignment:
        """Recompute the division from the current swarm and map."""
        with self._lock:
            missing = self.missing()
            if missing:
                raise NotReadyError(missing)
            grid = self._grid
            logger.debug("Dividing area...")
            anchors = self.tracker.snapshot(grid.origin, grid.resolution)
            for aid, pos in anchors.items():
                if not grid.contains(pos):
                    logger.debug(f"Agent {aid} at {pos} is outside the map")

            seed = self.partitioner.weights if self.settings.warm_start else None
            assignment = self.partitioner.divide(grid, anchors, weights=seed)
            self.cache.store(assignment, grid)
            self._divisions += 1

            logger.info(
                f"Divided area among {len(anchors)} agent(s) in {assignment.iterations} "
                f"iteration(s), deviation {assignment.deviation:.3f}"
            )
            self._events.append(
                SwarmEvent(AREA_DIVIDED, self.tracker.self_id, assignment.summary())
            )

            if self.visualize and self._publisher is not None:
                region = extract_region(assignment, grid, self.tracker.self_id)
                try:
                    self._publisher(region)
                except Exception as exc:
                    logger.error(f"Publishing assigned area failed: {exc}")
            return assignment

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def events(self, limit: int = 20) -> list[SwarmEvent]:
        """Most recent swarm events, oldest first."""
        if limit <= 0:
            return []
        return list(self._events)[-limit:]

    def status(self) -> dict:
        with self._lock:
            assignment = self.cache.assignment
            return {
                "state": self.state,
                "ready": self.is_ready(),
                "missing": self.missing(),
                "stale_reasons": list(self.cache.reasons),
                "divisions": self._divisions,
                "membership": self.tracker.status(),
                "map": (
                    None
                    if self._grid is None
                    else {
                        "width": self._grid.width,
                        "height": self._grid.height,
                        "resolution": self._grid.resolution,
                        "origin": list(self._grid.origin),
                    }
                ),
                "last_division": None if assignment is None else assignment.summary(),
                "settings": self.settings.to_dict(),
            }
