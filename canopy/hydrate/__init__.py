"""Consuming side: placeholder activation and diff application."""

from .bundles import BundleRegistry, dispose_behavior
from .coordinator import ClientNode, HydrationCoordinator

__all__ = [
    "BundleRegistry",
    "dispose_behavior",
    "ClientNode",
    "HydrationCoordinator",
]
