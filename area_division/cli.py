"""
Area division CLI entry point.

Usage:
    area-division gateway  --config area_division.yaml      # Start the API gateway
    area-division divide   scenario.yaml                    # Divide a map offline
    area-division validate --config area_division.yaml      # Check a config file

A scenario file holds a map and the world positions of the agents::

    map:
      width: 4
      height: 4
      resolution: 1.0
      origin: [0.0, 0.0]
      data: [0, 0, 0, 0,  0, 0, 0, 0,  0, 0, 0, 0,  0, 0, 0, 0]
    agents:
      cps-a: [0.0, 0.0]
      cps-b: [3.0, 3.0]
"""

import argparse
import logging
import sys

import yaml
from rich.console import Console
from rich.table import Table

from area_division.config import (
    default_config,
    load_config,
    validate_config,
)
from area_division.errors import InvalidInputError
from area_division.grid import OccupancyGrid, to_grid
from area_division.partition import UNASSIGNED, DivisionSettings, EquitablePartitioner

console = Console()

_GLYPHS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789"


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def cmd_gateway(args) -> None:
    """Start the FastAPI gateway server."""
    from area_division.api import main as run_gateway

    sys.argv = ["area_division.api", "--host", args.host, "--port", str(args.port)]
    if args.config:
        sys.argv += ["--config", args.config]
    run_gateway()


def load_scenario(path: str) -> tuple:
    """Read a scenario file.  Returns ``(grid, agents, division_overrides)``."""
    with open(path) as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict) or not isinstance(raw.get("map"), dict):
        raise InvalidInputError(f"{path}: missing 'map' section")
    grid = OccupancyGrid.from_dict(raw["map"])
    agents = raw.get("agents") or {}
    if not isinstance(agents, dict):
        raise InvalidInputError(f"{path}: 'agents' must map agent ids to [x, y]")
    return grid, agents, raw.get("division") or {}


def render_assignment(assignment) -> str:
    """Draw the assignment as text, top row first; '#' marks unassigned cells."""
    lines = []
    for row in reversed(range(assignment.height)):
        chars = []
        for col in range(assignment.width):
            idx = int(assignment.owners[row * assignment.width + col])
            chars.append("#" if idx == UNASSIGNED else _GLYPHS[idx % len(_GLYPHS)])
        lines.append("".join(chars))
    return "\n".join(lines)


def cmd_divide(args) -> int:
    """Divide a scenario map among its agents and print the result."""
    config = load_config(args.config) if args.config else default_config()
    try:
        grid, agents, overrides = load_scenario(args.scenario)
        division_cfg = dict(config["area_division"]["division"], **overrides)
        settings = DivisionSettings.from_config(division_cfg)
        anchors = {
            aid: to_grid(pos, grid.origin, grid.resolution) for aid, pos in sorted(agents.items())
        }
    except (OSError, ValueError, yaml.YAMLError) as exc:
        console.print(f"[red]Cannot divide:[/] {exc}")
        return 1

    assignment = EquitablePartitioner(settings).divide(grid, anchors)
    counts = assignment.counts()
    total = sum(counts.values())

    table = Table(title=f"Area division ({grid.width}x{grid.height}, {total} free cells)")
    table.add_column("Key", style="bold")
    table.add_column("Agent")
    table.add_column("Anchor", justify="right")
    table.add_column("Cells", justify="right")
    table.add_column("Share", justify="right", style="cyan")
    for i, aid in enumerate(assignment.agent_ids):
        share = counts[aid] / total if total else 0.0
        table.add_row(
            _GLYPHS[i % len(_GLYPHS)], aid, str(anchors[aid]), str(counts[aid]), f"{share:.1%}"
        )
    console.print(table)

    status = "[green]balanced[/]" if assignment.converged else "[yellow]iteration cap[/]"
    console.print(
        f"  {assignment.iterations} iteration(s), deviation {assignment.deviation:.3f}, {status}"
    )
    if args.show:
        console.print(render_assignment(assignment), highlight=False)
    return 0


def cmd_validate(args) -> int:
    """Validate a config file."""
    try:
        with open(args.config) as f:
            raw = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        console.print(f"[red]✗[/] Cannot read {args.config}: {exc}")
        return 1
    ok, errors = validate_config(raw)
    if ok:
        console.print(f"[green]✓[/] {args.config} is valid")
        return 0
    console.print(f"[red]✗[/] {args.config} has {len(errors)} error(s):")
    for msg in errors:
        console.print(f"  - {msg}")
    return 1


def main(argv=None) -> int:
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    parser = argparse.ArgumentParser(
        prog="area-division",
        description="Equitable area division for a swarm of agents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    p_gw = sub.add_parser(
        "gateway",
        help="Start the API gateway server",
        epilog="Example: area-division gateway --config area_division.yaml --port 8080",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_gw.add_argument("--config", default=None, help="YAML config file")
    p_gw.add_argument("--host", default="127.0.0.1", help="Bind address")
    p_gw.add_argument("--port", type=int, default=8000, help="Port number")

    p_div = sub.add_parser(
        "divide",
        help="Divide a scenario map offline",
        epilog="Example: area-division divide scenario.yaml --show",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    p_div.add_argument("scenario", help="Scenario YAML (map + agents)")
    p_div.add_argument("--config", default=None, help="YAML config for division settings")
    p_div.add_argument("--show", action="store_true", help="Print the assignment as text")

    p_val = sub.add_parser("validate", help="Validate a config file")
    p_val.add_argument("--config", required=True, help="YAML config file")

    args = parser.parse_args(argv)
    if args.verbose:
        logging.getLogger("AreaDivision").setLevel(logging.DEBUG)

    commands = {
        "gateway": cmd_gateway,
        "divide": cmd_divide,
        "validate": cmd_validate,
    }
    handler = commands.get(args.command)
    if handler is None:
        parser.print_help()
        return 0
    return handler(args) or 0


if __name__ == "__main__":
    sys.exit(main())
