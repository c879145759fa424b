"""MembershipTracker — timeout-based view of the swarm's agents and positions."""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from area_division.errors import InvalidInputError, NotReadyError
from area_division.grid import GridPosition, to_grid
from area_division.swarm.events import AGENT_JOINED, AGENT_LEFT, IDENTITY_SET, SwarmEvent

logger = logging.getLogger("AreaDivision.Membership")

DEFAULT_SWARM_TIMEOUT_S = 5.0


def valid_agent_id(agent_id) -> bool:
    """True for a non-empty string token without whitespace."""
    return (
        isinstance(agent_id, str)
        and agent_id != ""
        and not any(ch.isspace() for ch in agent_id)
    )


def _finite_position(position) -> Optional[tuple[float, float]]:
    try:
        x, y = (float(v) for v in position)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return x, y


@dataclass
class AgentRecord:
    """Last known position of another agent in the swarm."""

    agent_id: str
    x: float
    y: float
    last_seen: float  # epoch seconds, stamped on receipt

    @property
    def position(self) -> tuple[float, float]:
        return (self.x, self.y)

    def is_stale(self, timeout_s: float, now: float | None = None) -> bool:
        """True if not refreshed within *timeout_s* seconds of *now*."""
        if now is None:
            now = time.time()
        return self.last_seen + timeout_s < now

    def to_dict(self) -> dict:
        return {
            "agent_id": self.agent_id,
            "x": self.x,
            "y": self.y,
            "last_seen": self.last_seen,
        }

    @classmethod
    def from_dict(cls, d: dict) -> AgentRecord:
        return cls(
            agent_id=d["agent_id"],
            x=float(d["x"]),
            y=float(d["y"]),
            last_seen=float(d["last_seen"]),
        )


class MembershipTracker:
    """Tracks which agents are alive and where they are.

    Other agents arrive through :meth:`observe` (or :meth:`observe_many` for a
    whole swarm-position message); this agent's own identity and pose arrive
    through :meth:`set_identity` and :meth:`set_pose`.  Agents that stay
    silent for longer than ``timeout_s`` are removed by :meth:`sweep`.

    Every method that changes membership returns whether it did, so the
    owner can invalidate whatever it derived from the previous membership.
    """

    def __init__(
        self,
        timeout_s: float = DEFAULT_SWARM_TIMEOUT_S,
        listener: Callable[[SwarmEvent], None] | None = None,
    ) -> None:
        self.timeout_s = float(timeout_s)
        self._listener = listener
        self._lock = threading.Lock()
        self._records: dict[str, AgentRecord] = {}

        self._self_id: str = ""
        self._self_pose: tuple[float, float] | None = None
        self._swarm_seen = False

    # ------------------------------------------------------------------
    # Local identity and pose
    # ------------------------------------------------------------------

    @property
    def self_id(self) -> str:
        return self._self_id

    @property
    def self_pose(self) -> tuple[float, float] | None:
        return self._self_pose

    @property
    def swarm_seen(self) -> bool:
        """True once at least one swarm-position message was processed."""
        return self._swarm_seen

    def set_identity(self, agent_id) -> bool:
        """Set this agent's identity. Returns True if it was new or changed."""
        if not valid_agent_id(agent_id):
            logger.warning(f"Rejected malformed identity {agent_id!r}")
            return False
        with self._lock:
            if agent_id == self._self_id:
                return False
            self._self_id = agent_id
            # Our own id can never also be a remote record
            self._records.pop(agent_id, None)
        logger.info(f"Identity set: {agent_id}")
        self._emit(SwarmEvent(IDENTITY_SET, agent_id))
        return True

    def set_pose(self, position, valid: bool = True) -> bool:
        """Update this agent's own pose.

        Returns True only when the pose becomes known for the first time.
        Poses flagged invalid (e.g. an unset timestamp) are ignored.
        """
        if not valid:
            return False
        pos = _finite_position(position)
        if pos is None:
            logger.warning(f"Rejected non-finite own pose {position!r}")
            return False
        with self._lock:
            first = self._self_pose is None
            self._self_pose = pos
        if first:
            logger.debug(f"Own pose established at ({pos[0]:.2f}, {pos[1]:.2f})")
        return first

    # ------------------------------------------------------------------
    # Swarm feed
    # ------------------------------------------------------------------

    def observe(self, agent_id, position, timestamp: float | None = None) -> bool:
        """Record a position update for another agent.

        Returns True if *agent_id* was previously unknown (membership changed).
        A refresh of a known agent updates it in place and returns False.
        Malformed ids and non-finite positions are logged and dropped.
        """
        if not valid_agent_id(agent_id):
            logger.warning(f"Dropped update with malformed agent id {agent_id!r}")
            return False
        pos = _finite_position(position)
        if pos is None:
            logger.warning(f"Dropped non-finite position {position!r} from {agent_id}")
            return False
        if timestamp is None:
            timestamp = time.time()

        with self._lock:
            if agent_id == self._self_id:
                return False
            record = self._records.get(agent_id)
            if record is not None:
                record.x, record.y = pos
                record.last_seen = float(timestamp)
                return False
            self._records[agent_id] = AgentRecord(agent_id, pos[0], pos[1], float(timestamp))

        logger.debug(f"New CPS {agent_id}")
        self._emit(SwarmEvent(AGENT_JOINED, agent_id, {"x": pos[0], "y": pos[1]}))
        return True

    def observe_many(self, positions: Iterable, now: float | None = None) -> bool:
        """Process one swarm-position message.

        *positions* yields ``(agent_id, x, y)`` tuples or dicts with
        ``agent_id``, ``x`` and ``y`` keys.  All entries are stamped with
        *now*, after which stale agents are swept.

        Returns:
            True if any agent joined or left.
        """
        if now is None:
            now = time.time()
        changed = False
        for entry in positions:
            if isinstance(entry, dict):
                agent_id, position = entry.get("agent_id"), (entry.get("x"), entry.get("y"))
            else:
                try:
                    agent_id, x, y = entry
                except (TypeError, ValueError):
                    logger.warning(f"Dropped malformed swarm entry {entry!r}")
                    continue
                position = (x, y)
            changed |= self.observe(agent_id, position, timestamp=now)
        self._swarm_seen = True
        changed |= bool(self.sweep(now))
        return changed

    def sweep(self, now: float | None = None) -> list[str]:
        """Remove agents silent for longer than the timeout.

        Returns:
            Sorted ids of the removed agents.
        """
        if now is None:
            now = time.time()
        with self._lock:
            stale = sorted(
                aid for aid, rec in self._records.items() if rec.is_stale(self.timeout_s, now)
            )
            for aid in stale:
                del self._records[aid]

        for aid in stale:
            logger.debug(f"Remove CPS {aid}")
            self._emit(SwarmEvent(AGENT_LEFT, aid, {"timeout_s": self.timeout_s}))
        return stale

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get(self, agent_id: str) -> AgentRecord | None:
        with self._lock:
            return self._records.get(agent_id)

    def agents(self) -> list[AgentRecord]:
        """Known remote agents sorted by id (self excluded)."""
        with self._lock:
            return [self._records[k] for k in sorted(self._records)]

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, agent_id) -> bool:
        return agent_id in self._records or (bool(agent_id) and agent_id == self._self_id)

    def snapshot(self, origin, resolution: float) -> Mapping[str, GridPosition]:
        """Grid positions of every known agent, this agent included.

        Returns a read-only mapping sorted by agent id.  Remote agents whose
        position cannot be expressed in grid cells are left out with a
        warning.

        Raises:
            NotReadyError: If own identity or pose is not known yet, or the
                own pose cannot be expressed in grid cells.
        """
        with self._lock:
            missing = []
            if not self._self_id:
                missing.append("identity")
            if self._self_pose is None:
                missing.append("pose")
            if missing:
                raise NotReadyError(missing)
            self_id, self_pose = self._self_id, self._self_pose
            world = {aid: rec.position for aid, rec in self._records.items()}

        try:
            cells = {self_id: to_grid(self_pose, origin, resolution)}
        except InvalidInputError as exc:
            logger.warning(f"Own pose cannot be mapped to the grid: {exc}")
            raise NotReadyError(["pose"]) from exc
        for aid, position in world.items():
            try:
                cells[aid] = to_grid(position, origin, resolution)
            except InvalidInputError as exc:
                logger.warning(f"Left out CPS {aid}: {exc}")
        return MappingProxyType({aid: cells[aid] for aid in sorted(cells)})

    def status(self) -> dict:
        now = time.time()
        with self._lock:
            return {
                "self_id": self._self_id,
                "pose_valid": self._self_pose is not None,
                "swarm_seen": self._swarm_seen,
                "timeout_s": self.timeout_s,
                "agents": [
                    dict(rec.to_dict(), age_s=round(now - rec.last_seen, 2))
                    for _, rec in sorted(self._records.items())
                ],
            }

    def _emit(self, event: SwarmEvent) -> None:
        if self._listener is None:
            return
        try:
            self._listener(event)
        except Exception as exc:
            logger.warning(f"Swarm event listener error for {event.event_type}: {exc}")
