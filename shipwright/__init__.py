"""
shipwright - Multi-platform build/test/package/release orchestrator

Expands job templates across platform matrices, runs them concurrently
over an explicit job graph, routes artifacts between isolated instances,
and publishes a single draft release on tagged commits.
"""

__version__ = "0.1.0"
__author__ = "Shipwright Team"


__all__ = ["ShipwrightConfig", "load_config", "get_shipwright_home", "run_pipeline"]

from .config import ShipwrightConfig, load_config, get_shipwright_home
from .pipeline import run_pipeline
