"""Engine package exposing sync components."""

from . import executor, mirror, planner, snapshot

__all__ = ["executor", "mirror", "planner", "snapshot"]
