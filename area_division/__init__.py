"""area_division: equitable division of a shared map among a swarm of agents."""

try:
    from importlib.metadata import version as _pkg_version

    __version__ = _pkg_version("area-division")
except Exception:
    __version__ = "2026.10.19"  # fallback

__all__ = ["__version__"]
