"""Configuration loading and validation for area division.

Configs are YAML files with an ``area_division`` section::

    area_division:
      loop_rate: 1.5             # Hz, cadence of the membership sweep
      queue_size: 1              # accepted and validated, not read
      swarm_timeout: 5.0         # seconds before a silent agent is dropped
      visualize: false           # publish own region after every division
      division:
        max_iterations: 30
        area_tolerance: 0.01
        convergence_tolerance: 1.0e-4
        damping: 0.5
        warm_start: false

``queue_size`` sized the inbound message queues of the ROS node.  It is still
accepted so existing node configs load unchanged, but nothing reads it here.

Missing keys fall back to :data:`DEFAULTS`.  Call :func:`validate_config`
early in startup to fail fast with a helpful message.
"""

from __future__ import annotations

import copy
import logging
import math
from typing import List, Tuple

import yaml

logger = logging.getLogger("AreaDivision.Config")

DEFAULTS: dict = {
    "area_division": {
        "loop_rate": 1.5,
        "queue_size": 1,
        "swarm_timeout": 5.0,
        "visualize": False,
        "division": {
            "max_iterations": 30,
            "area_tolerance": 0.01,
            "convergence_tolerance": 1e-4,
            "damping": 0.5,
            "warm_start": False,
        },
    }
}

# key -> (type, minimum, exclusive)
_POSITIVE_KEYS = {
    "loop_rate": (float, 0.0, True),
    "queue_size": (int, 1, False),
    "swarm_timeout": (float, 0.0, True),
}
_DIVISION_KEYS = {
    "max_iterations": (int, 1, False),
    "area_tolerance": (float, 0.0, False),
    "convergence_tolerance": (float, 0.0, False),
    "damping": (float, 0.0, True),
}


def _merge(base: dict, override: dict) -> dict:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _merge(out[key], value)
        else:
            out[key] = value
    return out


def default_config() -> dict:
    return copy.deepcopy(DEFAULTS)


def merge_defaults(config: dict | None) -> dict:
    """Overlay *config* on :data:`DEFAULTS`."""
    return _merge(DEFAULTS, config or {})


def load_config(path: str) -> dict:
    """Load a YAML config and merge it onto the defaults."""
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError as exc:
        logger.error(f"Config file not found: {path}")
        raise SystemExit(1) from exc
    if not isinstance(raw, dict):
        logger.error(f"Config {path} must be a mapping, got {type(raw).__name__}")
        raise SystemExit(1)
    logger.info(f"Loaded configuration: {path}")
    return merge_defaults(raw)


def _check_number(errors: List[str], label: str, value, kind, minimum, exclusive) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        errors.append(f"'{label}' must be a number, got {value!r}")
        return
    if kind is int and not float(value).is_integer():
        errors.append(f"'{label}' must be an integer, got {value!r}")
        return
    if not math.isfinite(value):
        errors.append(f"'{label}' must be finite")
    elif exclusive and value <= minimum:
        errors.append(f"'{label}' must be > {minimum}, got {value}")
    elif not exclusive and value < minimum:
        errors.append(f"'{label}' must be >= {minimum}, got {value}")


def validate_config(config: dict) -> Tuple[bool, List[str]]:
    """Validate a loaded config dict.

    Returns:
        A ``(is_valid, errors)`` tuple.  ``is_valid`` is ``True`` only when
        ``errors`` is empty.
    """
    if not isinstance(config, dict):
        return False, ["Config must be a dict (check YAML syntax)"]

    errors: List[str] = []
    section = config.get("area_division")
    if section is None:
        return False, ["Missing required top-level key: 'area_division'"]
    if not isinstance(section, dict):
        return False, ["'area_division' must be a mapping (dict), not a scalar"]

    for key, (kind, minimum, exclusive) in _POSITIVE_KEYS.items():
        if key in section:
            _check_number(errors, f"area_division.{key}", section[key], kind, minimum, exclusive)

    if "visualize" in section and not isinstance(section["visualize"], bool):
        errors.append("'area_division.visualize' must be true or false")

    division = section.get("division", {})
    if not isinstance(division, dict):
        errors.append("'area_division.division' must be a mapping (dict)")
    else:
        for key, (kind, minimum, exclusive) in _DIVISION_KEYS.items():
            if key in division:
                _check_number(
                    errors, f"area_division.division.{key}", division[key], kind, minimum, exclusive
                )
        damping = division.get("damping")
        if isinstance(damping, (int, float)) and not isinstance(damping, bool) and damping > 1:
            errors.append(f"'area_division.division.damping' must be <= 1, got {damping}")

    return len(errors) == 0, errors


def log_validation_result(config: dict, label: str = "area division config") -> bool:
    """Validate *config* and log each error.  Returns True if valid."""
    ok, errors = validate_config(config)
    if ok:
        logger.debug("%s validation passed", label)
    else:
        for msg in errors:
            logger.error("%s validation error: %s", label, msg)
    return ok
