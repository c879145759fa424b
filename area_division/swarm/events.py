"""SwarmEvent — lightweight event type for membership and division changes."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

AGENT_JOINED = "agent_joined"
AGENT_LEFT = "agent_left"
IDENTITY_SET = "identity_set"
MAP_RECEIVED = "map_received"
AREA_DIVIDED = "area_divided"


@dataclass
class SwarmEvent:
    """An event emitted by the swarm (agent join/leave, division, etc.)."""

    event_type: str  # e.g. "agent_joined", "agent_left", "area_divided"
    agent_id: str
    payload: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "agent_id": self.agent_id,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, d: dict) -> SwarmEvent:
        return cls(
            event_type=d["event_type"],
            agent_id=d["agent_id"],
            payload=dict(d.get("payload", {})),
            timestamp=float(d.get("timestamp", 0.0)),
        )
