"""
Capacity probing against Prometheus.

Each cluster exports kube_resourcequota series labelled with its cluster id.
The free capacity of a namespace on a cluster is the quota's hard limit minus
its used amount, computed in PromQL with an on(cluster) match so a cluster
missing either side of the pair never appears in the result.

Memory is reported in bytes by the exporter and converted to gigabytes
(1024^3) inside the query, so both snapshots are directly comparable with a
ResourceRequirement.
"""

import enum
import requests
from typing import Dict, Optional, Tuple

from medea.errors import UpstreamError
from medea.utils.misc import join_url
from medea.utils.logging import get_logger

log = get_logger("scout.prober")

QUERY_PATH = "/api/v1/query"

CPU_QUERY = (
    'kube_resourcequota{{namespace="{ns}",resource="limits.cpu",type="hard"}}'
    ' - on(cluster) '
    'kube_resourcequota{{namespace="{ns}",resource="limits.cpu",type="used"}}'
)
MEMORY_QUERY = (
    '(kube_resourcequota{{namespace="{ns}",resource="limits.memory",type="hard"}}'
    ' - on(cluster) '
    'kube_resourcequota{{namespace="{ns}",resource="limits.memory",type="used"}})/1024^3'
)


class ResourceKind(str, enum.Enum):
    CPU = "cpu"
    MEMORY = "memory"


QUERIES = {
    ResourceKind.CPU: CPU_QUERY,
    ResourceKind.MEMORY: MEMORY_QUERY,
}


def build_query(namespace: str, kind: ResourceKind) -> str:
    """Render the free-capacity PromQL expression for a namespace."""
    escaped = namespace.replace("\\", "\\\\").replace('"', '\\"')
    return QUERIES[kind].format(ns=escaped)


def parse_vector(payload: Dict) -> Dict[str, float]:
    """
    Extract cluster -> value from an instant-vector query response.

    Samples without a cluster label, without a [timestamp, value] pair, or
    whose value is not numeric are skipped.

    :param payload: Decoded Prometheus response body.
    :return: Mapping of cluster id to sample value.
    :raises UpstreamError: If the payload is not a successful query result.
    """
    if not isinstance(payload, dict):
        raise UpstreamError("Prometheus response is not a JSON object")
    if payload.get("status") == "error":
        raise UpstreamError(f"Prometheus query failed: {payload.get('error', 'unknown error')}")

    data = payload.get("data") or {}
    results = data.get("result") if isinstance(data, dict) else None
    if not isinstance(results, list):
        raise UpstreamError("Prometheus response has no result vector")

    values: Dict[str, float] = {}
    for sample in results:
        if not isinstance(sample, dict):
            continue
        cluster = (sample.get("metric") or {}).get("cluster")
        value = sample.get("value")
        if not cluster or not isinstance(value, list) or len(value) < 2:
            continue
        # Prometheus encodes sample values as strings, e.g. "29"
        if not isinstance(value[1], str):
            continue
        try:
            values[cluster] = float(value[1])
        except ValueError:
            log.debug(f"Skipping non-numeric sample for cluster {cluster}: {value[1]!r}")
    return values


class CapacityProber:
    """
    Queries Prometheus for the free CPU and RAM of a namespace per cluster.

    One HTTP request is issued per resource kind. There is no retry and no
    partial fallback: any transport or decode failure is an UpstreamError.
    """

    def __init__(self,
                 prometheus_url: str,
                 timeout: float = 10.0,
                 session: Optional[requests.Session] = None):
        """
        :param prometheus_url: Base URL of the Prometheus server.
        :param timeout: Seconds before a query is abandoned.
        :param session: Optional requests session (shared connection pool).
        """
        self.prometheus_url = prometheus_url
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self, namespace: str, kind: ResourceKind) -> Dict[str, float]:
        """
        Fetch the free amount of one resource for every cluster.

        :param namespace: Namespace whose quota is inspected.
        :param kind: CPU (cores) or MEMORY (gigabytes).
        :return: Capacity snapshot, cluster id -> free amount.
        :raises UpstreamError: On network, HTTP or decode failure.
        """
        query = build_query(namespace, kind)
        try:
            resp = self.session.get(
                join_url(self.prometheus_url, QUERY_PATH),
                params={"query": query},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            payload = resp.json()
        except requests.exceptions.RequestException as e:
            raise UpstreamError(f"Prometheus request failed: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"Prometheus returned invalid JSON: {e}") from e

        snapshot = parse_vector(payload)
        log.debug(f"{kind.value} capacity in {namespace}: {snapshot}")
        return snapshot

    def snapshot(self, namespace: str) -> Tuple[Dict[str, float], Dict[str, float]]:
        """
        Fetch both CPU and memory snapshots for a namespace.

        :return: (cpu snapshot, ram snapshot).
        """
        cpu = self.fetch(namespace, ResourceKind.CPU)
        ram = self.fetch(namespace, ResourceKind.MEMORY)
        return cpu, ram
