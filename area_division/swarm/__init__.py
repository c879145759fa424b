"""area_division.swarm — swarm membership for area division.

Keeps a timeout-based view of which agents (CPSs) are alive and where they
are, so the area can be re-divided whenever the swarm changes.

Key classes:

- :class:`MembershipTracker` — Records position updates of the other agents,
  this agent's own identity and pose, and evicts agents that stay silent
  longer than ``swarm_timeout`` seconds.
- :class:`AgentRecord` — Last known position and receipt time of one agent.
- :class:`SwarmEvent` — Typed event envelope (``agent_joined``,
  ``agent_left``, ``area_divided``, ...).

Configuration (``area_division`` section)::

    area_division:
      swarm_timeout: 5.0         # seconds of silence before an agent is dropped
"""

from area_division.swarm.events import SwarmEvent
from area_division.swarm.membership import AgentRecord, MembershipTracker

__all__ = [
    "AgentRecord",
    "MembershipTracker",
    "SwarmEvent",
]
