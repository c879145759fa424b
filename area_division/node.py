"""
Area division node -- periodic membership sweep around an AreaCoordinator.

The node owns a coordinator and a daemon thread that calls
:meth:`AreaCoordinator.tick` at ``loop_rate`` Hz, so silent agents are
evicted within one loop period of their timeout.  Feeds and queries go
straight to :attr:`coordinator`.

Config format::

    area_division:
      loop_rate: 1.5             # Hz
      swarm_timeout: 5.0

Usage::

    node = AreaDivisionNode(config, publisher=sink)
    node.start()
    ...
    node.stop()
"""

import logging
import threading
import time

from area_division.config import merge_defaults
from area_division.coordinator import AreaCoordinator

logger = logging.getLogger("AreaDivision.Node")


class AreaDivisionNode:
    """Runs the coordinator's tick loop on a background thread."""

    def __init__(self, config: dict = None, publisher=None, coordinator: AreaCoordinator = None):
        """Initialize the node.

        Args:
            config: Config dict; reads the ``area_division`` section.
            publisher: Sink for this agent's region when ``visualize`` is on.
            coordinator: Use an existing coordinator instead of building one.
        """
        cfg = merge_defaults(config)["area_division"]
        self.loop_rate = float(cfg.get("loop_rate", 1.5))
        self.coordinator = coordinator or AreaCoordinator(config, publisher=publisher)

        self._running = False
        self._thread = None
        self._stop_event = threading.Event()
        self._ticks = 0
        self._last_tick = None

    @property
    def period(self) -> float:
        return 1.0 / self.loop_rate

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the tick thread."""
        if self._running:
            return
        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, daemon=True, name="area-division")
        self._thread.start()
        logger.info(f"Area division node started at {self.loop_rate} Hz")

    def stop(self):
        """Stop the tick thread."""
        self._running = False
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=2)
            self._thread = None
        logger.info("Area division node stopped")

    def tick_once(self, now: float = None) -> list:
        """Run a single sweep.  Returns the ids evicted."""
        evicted = self.coordinator.tick(now)
        self._ticks += 1
        self._last_tick = time.time()
        if evicted:
            logger.debug(f"Evicted {len(evicted)} silent agent(s): {', '.join(evicted)}")
        return evicted

    def _loop(self):
        while self._running:
            try:
                self.tick_once()
            except Exception as exc:
                logger.error(f"Area division tick failed: {exc}")
            self._stop_event.wait(self.period)

    def get_status(self) -> dict:
        """Return node status for telemetry."""
        return {
            "running": self._running,
            "loop_rate_hz": self.loop_rate,
            "ticks": self._ticks,
            "last_tick_s_ago": (
                None if self._last_tick is None else round(time.time() - self._last_tick, 1)
            ),
        }
