"""
Equitable area partitioning.

Splits the traversable cells of an occupancy grid among a set of agents so
that every agent receives a region of about the same size, grown around the
agent's own cell (its *anchor*).

The partition is a multiplicatively weighted nearest-anchor assignment::

    owner(c) = argmin_i  dist(c, anchor_i) / w_i

Weights start at 1.0 and are rebalanced after every pass::

    w_i *= (target / count_i) ** damping

so agents holding fewer cells than the equal share ``target`` grow and
agents holding more shrink.  Passes repeat until the largest relative
deviation from ``target`` is within ``area_tolerance``, the weights stop
moving (``convergence_tolerance``), or ``max_iterations`` is reached.  The
best assignment seen is returned, so hitting the cap still yields a complete
(if less balanced) partition.

Configuration (``area_division.division`` section)::

    division:
      max_iterations: 30
      area_tolerance: 0.01         # max relative deviation from equal share
      convergence_tolerance: 1.0e-4
      damping: 0.5                 # exponent of the weight update, (0, 1]
      warm_start: false            # seed weights from the previous division
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Mapping, Optional

import numpy as np

from area_division.errors import InvalidInputError
from area_division.grid import GridPosition, OccupancyGrid

logger = logging.getLogger("AreaDivision.Partition")

__all__ = ["UNASSIGNED", "Assignment", "DivisionSettings", "EquitablePartitioner"]

UNASSIGNED = -1

STOP_BALANCED = "balanced"
STOP_WEIGHTS_SETTLED = "weights_settled"
STOP_ITERATION_CAP = "iteration_cap"
STOP_EMPTY = "empty"


@dataclass(frozen=True)
class DivisionSettings:
    """Tuning knobs of the balancing loop."""

    max_iterations: int = 30
    area_tolerance: float = 0.01
    convergence_tolerance: float = 1e-4
    damping: float = 0.5
    warm_start: bool = False

    def __post_init__(self) -> None:
        if int(self.max_iterations) < 1:
            raise InvalidInputError(f"max_iterations must be >= 1, got {self.max_iterations}")
        for name in ("area_tolerance", "convergence_tolerance"):
            value = float(getattr(self, name))
            if not math.isfinite(value) or value < 0:
                raise InvalidInputError(f"{name} must be a finite value >= 0, got {value}")
        damping = float(self.damping)
        if not (0.0 < damping <= 1.0):
            raise InvalidInputError(f"damping must be in (0, 1], got {damping}")

    @classmethod
    def from_config(cls, cfg: Optional[dict]) -> DivisionSettings:
        cfg = cfg or {}
        defaults = cls()
        return cls(
            max_iterations=int(cfg.get("max_iterations", defaults.max_iterations)),
            area_tolerance=float(cfg.get("area_tolerance", defaults.area_tolerance)),
            convergence_tolerance=float(
                cfg.get("convergence_tolerance", defaults.convergence_tolerance)
            ),
            damping=float(cfg.get("damping", defaults.damping)),
            warm_start=bool(cfg.get("warm_start", defaults.warm_start)),
        )

    def to_dict(self) -> dict:
        return {
            "max_iterations": self.max_iterations,
            "area_tolerance": self.area_tolerance,
            "convergence_tolerance": self.convergence_tolerance,
            "damping": self.damping,
            "warm_start": self.warm_start,
        }


@dataclass(frozen=True, eq=False)
class Assignment:
    """Result of one division: the owner of every grid cell.

    ``owners[i]`` is an index into ``agent_ids`` for the flat, row-major cell
    ``i``, or :data:`UNASSIGNED` for occupied and unknown cells.
    """

    width: int
    height: int
    agent_ids: tuple[str, ...]
    owners: np.ndarray = field(repr=False)
    iterations: int = 0
    deviation: float = 0.0
    stop_reason: str = STOP_EMPTY
    weights: Mapping[str, float] = field(default_factory=dict)
    history: tuple[float, ...] = ()

    @property
    def converged(self) -> bool:
        """True unless the iteration cap ended the balancing loop."""
        return self.stop_reason != STOP_ITERATION_CAP

    def owner_of(self, col: int, row: int) -> str | None:
        idx = int(self.owners[row * self.width + col])
        return None if idx == UNASSIGNED else self.agent_ids[idx]

    def cells_of(self, agent_id: str) -> np.ndarray:
        """Flat indices of the cells owned by *agent_id* (empty if unknown)."""
        if agent_id not in self.agent_ids:
            return np.empty(0, dtype=np.intp)
        return np.flatnonzero(self.owners == self.agent_ids.index(agent_id))

    def counts(self) -> dict[str, int]:
        assigned = self.owners[self.owners != UNASSIGNED]
        totals = np.bincount(assigned, minlength=len(self.agent_ids))
        return {aid: int(totals[i]) for i, aid in enumerate(self.agent_ids)}

    def summary(self) -> dict:
        return {
            "agents": list(self.agent_ids),
            "counts": self.counts(),
            "iterations": self.iterations,
            "deviation": round(self.deviation, 4),
            "converged": self.converged,
            "stop_reason": self.stop_reason,
        }


class EquitablePartitioner:
    """Divides traversable grid cells equally among agents.

    Example::

        partitioner = EquitablePartitioner(DivisionSettings(max_iterations=30))
        assignment = partitioner.divide(grid, {"a": (0, 0), "b": (3, 3)})
        assignment.counts()   # cells per agent id

    The partitioner keeps the final weights of its last division in
    :attr:`weights`; pass them back as ``weights=`` to warm-start the next
    division after a reconfiguration.
    """

    def __init__(self, settings: DivisionSettings | None = None) -> None:
        self.settings = settings or DivisionSettings()
        self.weights: dict[str, float] = {}

    def divide(
        self,
        grid: OccupancyGrid,
        anchors: Mapping[str, GridPosition],
        weights: Mapping[str, float] | None = None,
    ) -> Assignment:
        """Assign every traversable cell of *grid* to one of *anchors*.

        Args:
            grid: Map to divide; only ``CELL_FREE`` cells are assigned.
            anchors: Agent id to grid position.  Positions outside the grid
                or on obstacles are fine; proximity alone decides ownership.
            weights: Optional starting weights per agent id.  Agents not
                listed start at 1.0.

        Returns:
            The most balanced :class:`Assignment` found.
        """
        cfg = self.settings
        agent_ids = tuple(sorted(anchors))
        n = len(agent_ids)
        owners = np.full(grid.size, UNASSIGNED, dtype=np.int32)
        free = np.flatnonzero(grid.traversable_mask())

        if n == 0 or free.size == 0:
            owners.setflags(write=False)
            self.weights = {aid: 1.0 for aid in agent_ids}
            return Assignment(
                width=grid.width,
                height=grid.height,
                agent_ids=agent_ids,
                owners=owners,
                weights=dict(self.weights),
            )

        # Distances from every anchor to every free cell, computed once
        anchor_xy = np.array([anchors[aid] for aid in agent_ids], dtype=float)
        cols = (free % grid.width).astype(float)
        rows = (free // grid.width).astype(float)
        dist = np.hypot(cols[None, :] - anchor_xy[:, :1], rows[None, :] - anchor_xy[:, 1:])

        w = np.ones(n)
        if weights:
            for i, aid in enumerate(agent_ids):
                seed = weights.get(aid)
                if seed is not None and math.isfinite(seed) and seed > 0:
                    w[i] = float(seed)
            w /= w.mean()

        target = free.size / n
        best_local = None
        best_dev = math.inf
        best_w = w
        history: list[float] = []
        stop_reason = STOP_ITERATION_CAP
        iterations = 0

        for iterations in range(1, cfg.max_iterations + 1):
            # argmin keeps the first minimum, i.e. the lowest agent id on ties
            local = np.argmin(dist / w[:, None], axis=0)
            counts = np.bincount(local, minlength=n)
            deviation = float(np.max(np.abs(counts - target)) / target)
            if deviation < best_dev:
                best_local, best_dev, best_w = local, deviation, w.copy()
            history.append(best_dev)
            logger.debug(
                f"Iteration {iterations}: counts={counts.tolist()} deviation={deviation:.4f}"
            )

            if deviation <= cfg.area_tolerance:
                stop_reason = STOP_BALANCED
                break

            new_w = w * (target / np.maximum(counts, 0.5)) ** cfg.damping
            new_w /= new_w.mean()
            change = float(np.max(np.abs(new_w - w) / w))
            w = new_w
            if change <= cfg.convergence_tolerance:
                stop_reason = STOP_WEIGHTS_SETTLED
                break

        if stop_reason == STOP_ITERATION_CAP:
            logger.warning(
                f"Area division not balanced after {iterations} iterations "
                f"(deviation {best_dev:.3f} > {cfg.area_tolerance})"
            )

        owners[free] = best_local
        owners.setflags(write=False)
        self.weights = {aid: float(best_w[i]) for i, aid in enumerate(agent_ids)}
        return Assignment(
            width=grid.width,
            height=grid.height,
            agent_ids=agent_ids,
            owners=owners,
            iterations=iterations,
            deviation=best_dev,
            stop_reason=stop_reason,
            weights=dict(self.weights),
            history=tuple(history),
        )
