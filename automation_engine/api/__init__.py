"""REST API for the automation engine."""

from .endpoints import router, init_dependencies, get_engine

__all__ = ["router", "init_dependencies", "get_engine"]
