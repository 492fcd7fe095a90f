"""Capacity probing and cluster placement.

This package holds the scout side of Medea: Prometheus capacity snapshots,
the random placement policy and the clients the balancer uses to reach them.
"""

from medea.scout.prober import CapacityProber, ResourceKind
from medea.scout.selector import PlacementSelector
from medea.scout.client import ScoutClient, LocalPlacement

__all__ = ["CapacityProber", "ResourceKind", "PlacementSelector", "ScoutClient", "LocalPlacement"]
