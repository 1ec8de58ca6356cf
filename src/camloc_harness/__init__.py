"""
camloc test harness package.

Simulated camera clients, the tagged telemetry protocol, and a live
visualizer for the multi-camera triangulation testbed.
"""

__all__ = [
    "config",
    "models",
    "projection",
    "sources",
    "protocol",
    "scene",
    "ingest",
    "viewport",
    "render",
    "visualizer",
    "client",
    "collector",
    "feed",
]
