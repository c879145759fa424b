"""
Area division gateway.
FastAPI server exposing the area division of this agent: the swarm,
pose, identity and map feeds go in, assigned regions come out.

Run with:
    python -m area_division.api --config area_division.yaml
    # or
    area-division gateway --config area_division.yaml
"""

import argparse
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI
from pydantic import BaseModel

from area_division.api_errors import AreaAPIError, register_error_handlers
from area_division.config import default_config, load_config, log_validation_result
from area_division.grid import OccupancyGrid
from area_division.node import AreaDivisionNode

logger = logging.getLogger("AreaDivision.Gateway")


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------
class AppState:
    """Mutable application state shared across endpoints."""

    config: Optional[dict] = None
    node: Optional[AreaDivisionNode] = None
    published: Optional[OccupancyGrid] = None  # last region pushed by the coordinator
    published_at: Optional[float] = None
    boot_time: float = time.time()


state = AppState()


def _publish(region: OccupancyGrid) -> None:
    state.published = region
    state.published_at = time.time()


def _coordinator():
    if state.node is None:
        raise AreaAPIError("NODE_NOT_RUNNING", "Area division node is not running", 503)
    return state.node.coordinator


@asynccontextmanager
async def lifespan(app: FastAPI):
    config_path = os.getenv("AREA_DIVISION_CONFIG")
    state.config = load_config(config_path) if config_path else default_config()
    if not log_validation_result(state.config):
        raise SystemExit(1)
    state.node = AreaDivisionNode(state.config, publisher=_publish)
    state.node.start()
    try:
        yield
    finally:
        state.node.stop()


app = FastAPI(
    title="Area Division Gateway",
    description="Equitable division of a shared map among a swarm of agents.",
    lifespan=lifespan,
)
register_error_handlers(app)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------
class IdentityRequest(BaseModel):
    agent_id: str


class PoseRequest(BaseModel):
    x: float
    y: float
    valid: bool = True


class AgentPosition(BaseModel):
    agent_id: str
    x: float
    y: float


class SwarmPositionsRequest(BaseModel):
    positions: List[AgentPosition]


class MapRequest(BaseModel):
    width: int
    height: int
    resolution: float = 1.0
    origin: List[float] = [0.0, 0.0]
    data: List[int]


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
@app.get("/health")
async def health():
    """Health check -- returns OK if the gateway is running."""
    return {
        "status": "ok",
        "uptime_s": round(time.time() - state.boot_time, 1),
        "node": state.node is not None,
    }


@app.get("/api/status")
def api_status():
    coordinator = _coordinator()
    return {"node": state.node.get_status(), **coordinator.status()}


@app.get("/api/events")
def api_events(limit: int = 20):
    return {"events": [e.to_dict() for e in _coordinator().events(limit)]}


@app.post("/api/identity")
def api_identity(req: IdentityRequest):
    coordinator = _coordinator()
    coordinator.on_identity(req.agent_id)
    return {"ok": True, "state": coordinator.state}


@app.post("/api/pose")
def api_pose(req: PoseRequest):
    coordinator = _coordinator()
    coordinator.on_pose(req.x, req.y, valid=req.valid)
    return {"ok": True, "state": coordinator.state}


@app.post("/api/swarm/positions")
def api_swarm_positions(req: SwarmPositionsRequest):
    coordinator = _coordinator()
    coordinator.on_swarm_positions([(p.agent_id, p.x, p.y) for p in req.positions])
    return {"ok": True, "state": coordinator.state, "agents": len(coordinator.tracker)}


@app.put("/api/map")
def api_map(req: MapRequest):
    coordinator = _coordinator()
    if not coordinator.on_map(req.model_dump()):
        raise AreaAPIError("INVALID_MAP", "Map is malformed", 422)
    return {"ok": True, "state": coordinator.state}


@app.get("/api/area")
def api_area():
    """Region assigned to this agent (recomputed if the swarm changed)."""
    return _coordinator().get_area().to_dict()


@app.get("/api/published")
def api_published():
    if state.published is None:
        raise AreaAPIError("NOTHING_PUBLISHED", "No area has been published yet", 404)
    return {"published_at": state.published_at, "map": state.published.to_dict()}


@app.get("/api/area/{agent_id}")
def api_area_for(agent_id: str):
    """Region assigned to another agent of the swarm."""
    return _coordinator().get_area(agent_id).to_dict()


def main():
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    parser = argparse.ArgumentParser(description="Area Division Gateway")
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument("--host", default=os.getenv("AREA_DIVISION_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.getenv("AREA_DIVISION_PORT", "8000")))
    args = parser.parse_args()

    if args.config:
        os.environ["AREA_DIVISION_CONFIG"] = args.config

    uvicorn.run(
        "area_division.api:app",
        host=args.host,
        port=args.port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
