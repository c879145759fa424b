"""Tests for AreaCoordinator and AssignmentCache."""

from __future__ import annotations

from unittest.mock import MagicMock

import numpy as np
import pytest

from area_division.coordinator import STATE_STABLE, STATE_STALE, AreaCoordinator, AssignmentCache
from area_division.errors import NotReadyError
from area_division.grid import CELL_FREE, CELL_OCCUPIED, OccupancyGrid
from area_division.swarm.events import AGENT_JOINED, AGENT_LEFT, AREA_DIVIDED


def _config(**division) -> dict:
    return {
        "area_division": {
            "swarm_timeout": 5.0,
            "division": dict({"max_iterations": 30}, **division),
        }
    }


def _ready(grid: OccupancyGrid | None = None, config: dict | None = None, **kwargs):
    coord = AreaCoordinator(config or _config(), **kwargs)
    coord.on_identity("self")
    coord.on_pose(0.0, 0.0)
    coord.on_map(grid or OccupancyGrid.free(10, 10))
    return coord


# ---------------------------------------------------------------------------
# AssignmentCache
# ---------------------------------------------------------------------------


class TestAssignmentCache:
    def test_starts_stale(self):
        cache = AssignmentCache()
        assert cache.stale is True
        assert cache.valid is False

    def test_store_clears_stale(self):
        cache = AssignmentCache()
        cache.store(MagicMock(), OccupancyGrid.free(1, 1))
        assert cache.valid is True
        assert cache.reasons == []

    def test_invalidate_records_reason(self):
        cache = AssignmentCache()
        cache.store(MagicMock(), OccupancyGrid.free(1, 1))
        cache.invalidate("membership")
        assert cache.stale is True
        assert cache.reasons == ["membership"]


# ---------------------------------------------------------------------------
# Readiness
# ---------------------------------------------------------------------------


class TestReadiness:
    def test_nothing_known_is_not_ready(self):
        coord = AreaCoordinator()
        assert coord.missing() == ["identity", "pose", "map"]
        with pytest.raises(NotReadyError) as exc:
            coord.get_area()
        assert exc.value.missing == ["identity", "pose", "map"]

    def test_not_localized_is_not_ready(self):
        coord = AreaCoordinator()
        coord.on_identity("self")
        coord.on_map(OccupancyGrid.free(4, 4))
        coord.on_swarm_positions([("b", 1.0, 1.0)])
        with pytest.raises(NotReadyError) as exc:
            coord.get_area()
        assert exc.value.missing == ["pose"]

    def test_no_map_is_not_ready(self):
        coord = AreaCoordinator()
        coord.on_identity("self")
        coord.on_pose(0.0, 0.0)
        assert coord.is_ready() is False
        with pytest.raises(NotReadyError):
            coord.divide()

    def test_ready_once_everything_known(self):
        assert _ready().is_ready() is True


# ---------------------------------------------------------------------------
# Lazy recompute
# ---------------------------------------------------------------------------


class TestLazyRecompute:
    def test_first_query_divides(self):
        coord = _ready()
        assert coord.state == STATE_STALE
        region = coord.get_area()
        assert coord.state == STATE_STABLE
        assert region.traversable_count() == 100

    def test_stable_query_uses_cache(self):
        coord = _ready()
        coord.get_area()
        coord.partitioner.divide = MagicMock(side_effect=AssertionError("recomputed"))
        coord.get_area()
        coord.on_swarm_positions([])  # no membership change
        coord.get_area()

    def test_position_refresh_keeps_cache(self):
        coord = _ready()
        coord.on_swarm_positions([("b", 9.0, 9.0)], now=100.0)
        coord.get_area()
        coord.on_swarm_positions([("b", 8.0, 8.0)], now=101.0)
        coord.on_pose(1.0, 1.0)
        assert coord.state == STATE_STABLE

    def test_new_agent_invalidates(self):
        coord = _ready()
        coord.get_area()
        coord.on_swarm_positions([("b", 9.0, 9.0)])
        assert coord.state == STATE_STALE
        region = coord.get_area()
        assert coord.state == STATE_STABLE
        assert region.traversable_count() < 100

    def test_no_recompute_without_query(self):
        coord = _ready()
        coord.partitioner.divide = MagicMock(side_effect=AssertionError("recomputed"))
        coord.on_swarm_positions([("b", 9.0, 9.0)])
        coord.on_swarm_positions([("c", 5.0, 5.0)])
        assert coord.stale is True

    def test_identity_change_invalidates(self):
        coord = _ready()
        coord.get_area()
        coord.on_identity("renamed")
        assert coord.stale is True

    def test_same_geometry_map_keeps_cache(self):
        coord = _ready()
        coord.get_area()
        coord.on_map(OccupancyGrid.free(10, 10))
        assert coord.state == STATE_STABLE

    def test_new_geometry_map_invalidates(self):
        coord = _ready()
        coord.get_area()
        coord.on_map(OccupancyGrid.free(12, 10))
        assert coord.state == STATE_STALE
        assert coord.get_area().width == 12

    def test_malformed_map_dropped(self):
        coord = _ready()
        assert coord.on_map({"width": 2, "height": 2, "data": [0]}) is False
        assert coord.grid.width == 10

    def test_map_dict_accepted(self):
        coord = AreaCoordinator()
        assert coord.on_map({"width": 2, "height": 1, "data": [0, 0]}) is True
        assert coord.grid.width == 2


# ---------------------------------------------------------------------------
# Regions
# ---------------------------------------------------------------------------


class TestRegions:
    def test_regions_are_disjoint_and_total(self):
        data = np.full(100, CELL_FREE, dtype=np.int8)
        data[44:47] = CELL_OCCUPIED
        grid = OccupancyGrid(width=10, height=10, resolution=1.0, origin=(0, 0), data=data)
        coord = _ready(grid)
        coord.on_swarm_positions([("b", 9.0, 0.0), ("c", 5.0, 9.0)])
        masks = [coord.get_area(aid).traversable_mask() for aid in ("self", "b", "c")]
        total = masks[0].astype(int) + masks[1] + masks[2]
        assert np.array_equal(total, grid.traversable_mask().astype(int))

    def test_default_agent_is_self(self):
        coord = _ready()
        coord.on_swarm_positions([("b", 9.0, 9.0)])
        own = coord.get_area()
        assert np.array_equal(own.data, coord.get_area("self").data)

    def test_region_keeps_map_metadata(self):
        grid = OccupancyGrid.free(6, 6, resolution=0.25, origin=(-1.0, -1.0))
        coord = _ready(grid)
        region = coord.get_area()
        assert region.resolution == 0.25
        assert region.origin == (-1.0, -1.0)

    def test_get_assignment(self):
        coord = _ready()
        coord.on_swarm_positions([("b", 9.0, 9.0)])
        assignment = coord.get_assignment()
        assert assignment.agent_ids == ("b", "self")
        assert sum(assignment.counts().values()) == 100


# ---------------------------------------------------------------------------
# Eviction (scenario: agent goes silent)
# ---------------------------------------------------------------------------


class TestEviction:
    def test_silent_agent_cells_reassigned(self):
        coord = _ready()
        coord.on_swarm_positions([("b", 9.0, 0.0), ("c", 9.0, 9.0)], now=100.0)
        before = coord.get_assignment()
        c_cells = before.cells_of("c")
        assert c_cells.size > 0

        coord.on_swarm_positions([("b", 9.0, 0.0)], now=103.0)
        assert coord.tick(now=104.0) == []
        assert coord.state == STATE_STABLE

        assert coord.tick(now=105.5) == ["c"]
        assert coord.stale is True

        after = coord.get_assignment()
        assert coord.stale is False
        assert after.agent_ids == ("b", "self")
        owners = {after.owners[i] for i in c_cells.tolist()}
        assert owners <= {0, 1}

    def test_eviction_during_swarm_message(self):
        coord = _ready()
        coord.on_swarm_positions([("b", 1.0, 1.0)], now=0.0)
        coord.get_area()
        coord.on_swarm_positions([("d", 2.0, 2.0)], now=10.0)
        assert "b" not in coord.tracker
        assert coord.get_assignment().agent_ids == ("d", "self")


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


class TestPublish:
    def test_publishes_when_visualize_enabled(self):
        sink = MagicMock()
        config = _config()
        config["area_division"]["visualize"] = True
        coord = _ready(config=config, publisher=sink)
        region = coord.get_area()
        sink.assert_called_once()
        published = sink.call_args[0][0]
        assert np.array_equal(published.data, region.data)

    def test_no_publish_when_visualize_disabled(self):
        sink = MagicMock()
        coord = _ready(publisher=sink)
        coord.get_area()
        sink.assert_not_called()

    def test_publisher_error_does_not_break_query(self):
        sink = MagicMock(side_effect=RuntimeError("sink down"))
        config = _config()
        config["area_division"]["visualize"] = True
        coord = _ready(config=config, publisher=sink)
        assert coord.get_area().width == 10
        assert coord.state == STATE_STABLE


# ---------------------------------------------------------------------------
# Warm start
# ---------------------------------------------------------------------------


class TestWarmStart:
    def test_previous_weights_seed_next_division(self):
        coord = _ready(config=_config(warm_start=True))
        coord.on_swarm_positions([("b", 2.0, 2.0)])
        coord.get_area()
        seeded = dict(coord.partitioner.weights)
        coord.partitioner.divide = MagicMock(wraps=coord.partitioner.divide)
        coord.on_swarm_positions([("c", 9.0, 9.0)])
        coord.get_area()
        assert coord.partitioner.divide.call_args.kwargs["weights"] == seeded

    def test_cold_start_by_default(self):
        coord = _ready()
        coord.partitioner.divide = MagicMock(wraps=coord.partitioner.divide)
        coord.get_area()
        assert coord.partitioner.divide.call_args.kwargs["weights"] is None


# ---------------------------------------------------------------------------
# Status & events
# ---------------------------------------------------------------------------


class TestStatus:
    def test_status_before_division(self):
        status = AreaCoordinator().status()
        assert status["state"] == STATE_STALE
        assert status["ready"] is False
        assert status["last_division"] is None
        assert status["map"] is None

    def test_status_after_division(self):
        coord = _ready()
        coord.get_area()
        status = coord.status()
        assert status["state"] == STATE_STABLE
        assert status["divisions"] == 1
        assert status["last_division"]["counts"] == {"self": 100}
        assert status["map"]["width"] == 10

    def test_events_recorded(self):
        coord = _ready(config={"area_division": {"swarm_timeout": 1.0}})
        coord.on_swarm_positions([("b", 1.0, 1.0)], now=0.0)
        coord.tick(now=5.0)
        coord.get_area()
        types = [e.event_type for e in coord.events(limit=50)]
        assert AGENT_JOINED in types
        assert AGENT_LEFT in types
        assert types[-1] == AREA_DIVIDED

    def test_events_limit(self):
        coord = _ready()
        assert coord.events(limit=0) == []
        assert len(coord.events(limit=1)) == 1


# ---------------------------------------------------------------------------
# Unmappable positions
# ---------------------------------------------------------------------------


class TestUnmappablePositions:
    def test_far_away_agent_left_out_of_division(self):
        coord = _ready(OccupancyGrid.free(4, 4, resolution=0.05))
        coord.on_swarm_positions([("b", 1e308, 0.0)])
        region = coord.get_area()
        assert region.traversable_count() == 16
        assert coord.get_assignment().agent_ids == ("self",)

    def test_far_away_agent_still_tracked(self):
        coord = _ready(OccupancyGrid.free(4, 4, resolution=0.05))
        coord.on_swarm_positions([("b", 1e308, 0.0), ("c", 0.15, 0.15)])
        assert "b" in coord.tracker
        assert coord.get_assignment().agent_ids == ("c", "self")

    def test_unmappable_own_pose_is_not_ready(self):
        coord = AreaCoordinator()
        coord.on_identity("self")
        coord.on_pose(1e308, 0.0)
        coord.on_map(OccupancyGrid.free(4, 4, resolution=0.05))
        with pytest.raises(NotReadyError) as exc:
            coord.get_area()
        assert exc.value.missing == ["pose"]

        coord.on_pose(0.0, 0.0)
        assert coord.get_area().traversable_count() == 16
