"""
Placement selection.

A cluster is a candidate when both capacity snapshots know it and both report
at least the required amount. Among candidates the choice is uniform random:
no weighting by slack, no ordering preference, no affinity. Candidates are
sorted before the draw so a seeded random source gives the same answer
regardless of snapshot ordering.

Selection does not reserve anything. Two submissions probing at the same
time can both be placed on the same cluster.
"""

import random
from typing import Dict, List, Optional

from medea.errors import PlacementNotFound
from medea.core.resources import ResourceRequirement
from medea.utils.logging import get_logger

log = get_logger("scout.selector")


class PlacementSelector:
    """Chooses one cluster that satisfies a resource requirement."""

    def __init__(self, rng: Optional[random.Random] = None):
        """
        :param rng: Random source. Pass random.Random(seed) for reproducible choices.
        """
        self.rng = rng or random.Random()

    def candidates(self,
                   requirement: ResourceRequirement,
                   cpu: Dict[str, float],
                   ram: Dict[str, float]) -> List[str]:
        """
        List the clusters that can hold the requirement.

        :param requirement: CPU cores and RAM gigabytes needed.
        :param cpu: Free CPU per cluster.
        :param ram: Free RAM (gigabytes) per cluster.
        :return: Sorted cluster ids.
        """
        return sorted(
            cluster
            for cluster, free_cpu in cpu.items()
            if cluster in ram
            and free_cpu >= requirement.cpu
            and ram[cluster] >= requirement.ram
        )

    def select(self,
               requirement: ResourceRequirement,
               cpu: Dict[str, float],
               ram: Dict[str, float]) -> str:
        """
        Pick a cluster uniformly at random among the candidates.

        :raises PlacementNotFound: If no cluster satisfies both resources.
        """
        suitable = self.candidates(requirement, cpu, ram)
        if not suitable:
            raise PlacementNotFound(
                f"No suitable clusters found for cpu={requirement.cpu:g}, ram={requirement.ram:g}GB"
            )

        selected = self.rng.choice(suitable)
        log.debug(f"Selected {selected} out of {len(suitable)} candidate(s)")
        return selected
