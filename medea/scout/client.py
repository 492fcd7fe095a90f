"""
Placement sources used by the submission orchestrator.

The orchestrator only needs place(namespace, requirement) -> cluster. Two
implementations are provided:

- ScoutClient asks a running scout service over HTTP (the deployed setup,
  where the balancer and the scout are separate processes).
- LocalPlacement runs the prober and selector in process.
"""

import requests
from typing import Optional

from medea.errors import PlacementNotFound, UpstreamError
from medea.core.resources import ResourceRequirement
from medea.scout.prober import CapacityProber
from medea.scout.selector import PlacementSelector
from medea.utils.misc import join_url, parse_error_response
from medea.utils.logging import get_logger

log = get_logger("scout.client")

REQUEST_PATH = "/api/request"


class ScoutClient:
    """HTTP client for the scout service's POST /api/request endpoint."""

    def __init__(self,
                 scout_url: str,
                 timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        self.scout_url = scout_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def place(self, namespace: str, requirement: ResourceRequirement) -> str:
        """
        Ask the scout for a cluster able to hold the requirement.

        :param namespace: Namespace of the submission.
        :param requirement: Resources the submission needs.
        :return: Base URL of the selected cluster.
        :raises PlacementNotFound: If the scout answers 404.
        :raises UpstreamError: On any other failure.
        """
        payload = {"namespace": namespace, "cpu": requirement.cpu, "ram": requirement.ram}
        try:
            resp = self.session.post(
                join_url(self.scout_url, REQUEST_PATH),
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Scout service unreachable: {e}") from e

        if resp.status_code == 404:
            raise PlacementNotFound(parse_error_response(resp))
        if resp.status_code != 200:
            raise UpstreamError(f"scout returned status {resp.status_code}: {parse_error_response(resp)}")

        try:
            cluster = resp.json()["cluster"]
        except (ValueError, KeyError, TypeError) as e:
            raise UpstreamError(f"Scout returned an invalid response: {e}") from e
        if not isinstance(cluster, str) or not cluster:
            raise UpstreamError("Scout returned an empty cluster")
        return cluster


class LocalPlacement:
    """Runs the capacity prober and the placement selector in process."""

    def __init__(self, prober: CapacityProber, selector: PlacementSelector):
        self.prober = prober
        self.selector = selector

    def place(self, namespace: str, requirement: ResourceRequirement) -> str:
        cpu, ram = self.prober.snapshot(namespace)
        return self.selector.select(requirement, cpu, ram)
