"""
Integration tests for the scout and balancer working together.

Both services run in process behind FastAPI's TestClient. Prometheus and the
downstream clusters are fakes answering on a mocked requests session, so the
tests exercise every component of a submission without network access:

    balancer -> scout -> Prometheus
             -> cluster
             -> routing table -> lifecycle proxy -> cluster
"""

import json
import random
import itertools
import pytest
from urllib.parse import urlsplit
from unittest.mock import MagicMock
from fastapi.testclient import TestClient


class FakeClusters:
    """Downstream clusters that accept submissions and answer lifecycle calls."""

    def __init__(self, make_response, reject=()):
        self.make_response = make_response
        self.reject = set(reject)
        self.calls = []
        self._names = itertools.count(1)

    def request(self, method, url, data=None, headers=None, timeout=None):
        self.calls.append((method, url, data, headers))
        cluster = "{0.scheme}://{0.netloc}".format(urlsplit(url))

        if method == "POST" and url.endswith("/submit"):
            if cluster in self.reject:
                return self.make_response(403, {"message": "quota exceeded"})
            name = f"wf-{next(self._names)}"
            return self.make_response(201, {"metadata": {"name": name}, "cluster": cluster})
        return self.make_response(200, {"cluster": cluster, "method": method})


@pytest.fixture
def capacity():
    """Free CPU / RAM per cluster, editable by tests."""
    return {
        "cpu": {"http://c1": 2, "http://c2": 16, "http://c3": 16},
        "ram": {"http://c1": 64, "http://c2": 64, "http://c3": 8},
    }


@pytest.fixture
def scout(default_config, capacity, make_response, make_vector):
    """Scout service backed by a fake Prometheus."""
    from medea.server.scout import ScoutServer
    from medea.scout.prober import CapacityProber

    prometheus = MagicMock()

    def query(url, params=None, timeout=None):
        kind = "ram" if "limits.memory" in params["query"] else "cpu"
        return make_response(200, make_vector(capacity[kind]))

    prometheus.get.side_effect = query
    prober = CapacityProber("http://prom:9090", session=prometheus)

    default_config.scout.seed = 1
    server = ScoutServer(default_config, prober=prober)
    return TestClient(server.app)


@pytest.fixture
def clusters(make_response):
    return FakeClusters(make_response)


@pytest.fixture
def balancer(default_config, routing_table, scout, clusters):
    """Balancer service talking to the in-process scout and the fake clusters."""
    from medea.server.balancer import BalancerServer
    from medea.balancer.orchestrator import SubmissionOrchestrator
    from medea.balancer.proxy import LifecycleProxy
    from medea.scout.client import ScoutClient

    scout_session = MagicMock()
    scout_session.post.side_effect = lambda url, json=None, timeout=None: scout.post(
        urlsplit(url).path, json=json
    )
    cluster_session = MagicMock()
    cluster_session.request.side_effect = clusters.request

    orchestrator = SubmissionOrchestrator(
        ScoutClient("http://scout:8080", session=scout_session),
        routing_table,
        session=cluster_session,
    )
    proxy = LifecycleProxy(routing_table, session=cluster_session)
    server = BalancerServer(default_config, routing_table=routing_table, orchestrator=orchestrator, proxy=proxy)
    return TestClient(server.app)


def submission(parameters):
    return json.dumps({
        "resourceKind": "WorkflowTemplate",
        "resourceName": "spark-etl",
        "submitOptions": {"parameters": parameters},
    }).encode()


class TestPlacementFlow:
    """End-to-end submission and lifecycle tests."""

    @pytest.mark.integration
    def test_submit_then_status(self, balancer, clusters, sample_parameters):
        """Test a workflow is placed on a fitting cluster and later found there."""
        # 3 cores / 12.25 GB: c1 lacks CPU, c3 lacks RAM
        r = balancer.post(
            "/api/v1/workflows/ns1/submit",
            content=submission(sample_parameters),
            headers={"tuz": "secret"},
        )

        assert r.status_code == 201
        body = r.json()
        assert body["cluster"] == "http://c2"
        name = body["metadata"]["name"]

        r = balancer.get(f"/api/v1/workflows/ns1/{name}?fields=status", headers={"tuz": "secret"})

        assert r.status_code == 200
        assert r.json() == {"cluster": "http://c2", "method": "GET"}
        method, url, _, headers = clusters.calls[-1]
        assert url == f"http://c2/api/v1/workflows/ns1/{name}?fields=status"
        assert headers["tuz"] == "secret"

    @pytest.mark.integration
    def test_stop_and_delete(self, balancer, clusters, sample_parameters):
        """Test stop and delete reach the owning cluster."""
        name = balancer.post(
            "/api/v1/workflows/ns1/submit", content=submission(sample_parameters)
        ).json()["metadata"]["name"]

        assert balancer.put(f"/api/v1/workflows/ns1/{name}/stop").status_code == 200
        assert balancer.delete(f"/api/v1/workflows/ns1/{name}").status_code == 200

        assert [c[:2] for c in clusters.calls[-2:]] == [
            ("PUT", f"http://c2/api/v1/workflows/ns1/{name}/stop"),
            ("DELETE", f"http://c2/api/v1/workflows/ns1/{name}"),
        ]

    @pytest.mark.integration
    def test_no_capacity(self, balancer, clusters):
        """Test 404 when no cluster can hold the workflow, and nothing is sent."""
        r = balancer.post(
            "/api/v1/workflows/ns1/submit",
            content=submission(["driver_cores_limit=64", "driver_memory_limit=1g"]),
        )

        assert r.status_code == 404
        assert clusters.calls == []

    @pytest.mark.integration
    def test_rejected_submission_not_routable(self, balancer, clusters, routing_table, sample_parameters):
        """Test a cluster rejection is relayed and the workflow is unknown afterwards."""
        clusters.reject.add("http://c2")

        r = balancer.post("/api/v1/workflows/ns1/submit", content=submission(sample_parameters))

        assert r.status_code == 403
        assert r.json() == {"message": "quota exceeded"}
        assert routing_table.count() == 0
        assert balancer.get("/api/v1/workflows/ns1/wf-1").status_code == 404

    @pytest.mark.integration
    def test_placements_stay_within_capacity(self, balancer, capacity, routing_table):
        """Test every placement of a small workflow lands on a cluster that fits it."""
        for _ in range(20):
            r = balancer.post(
                "/api/v1/workflows/ns1/submit",
                content=submission(["driver_cores_limit=1", "driver_memory_limit=4g"]),
            )
            assert r.status_code == 201

        for record in routing_table.list_records(limit=20):
            assert capacity["cpu"][record.cluster] >= 1
            assert capacity["ram"][record.cluster] >= 4

    @pytest.mark.integration
    def test_prometheus_down(self, default_config, routing_table, clusters, make_response):
        """Test a metrics outage surfaces as a server error from the balancer."""
        import requests
        from medea.server.scout import ScoutServer
        from medea.server.balancer import BalancerServer
        from medea.balancer.orchestrator import SubmissionOrchestrator
        from medea.scout.client import ScoutClient
        from medea.scout.prober import CapacityProber

        prometheus = MagicMock()
        prometheus.get.side_effect = requests.exceptions.ConnectionError("refused")
        scout = TestClient(ScoutServer(
            default_config, prober=CapacityProber("http://prom:9090", session=prometheus)
        ).app)

        scout_session = MagicMock()
        scout_session.post.side_effect = lambda url, json=None, timeout=None: scout.post(
            urlsplit(url).path, json=json
        )
        cluster_session = MagicMock()
        cluster_session.request.side_effect = clusters.request
        orchestrator = SubmissionOrchestrator(
            ScoutClient("http://scout:8080", session=scout_session),
            routing_table,
            session=cluster_session,
        )
        balancer = TestClient(BalancerServer(
            default_config, routing_table=routing_table, orchestrator=orchestrator
        ).app)

        r = balancer.post("/api/v1/workflows/ns1/submit", content=submission(["driver_memory_limit=1g"]))

        assert r.status_code == 500
        assert "Prometheus" in r.json()["detail"]
        assert clusters.calls == []


class TestResubmission:
    """Tests for workflows submitted again under the same name."""

    @pytest.mark.integration
    def test_newest_placement_wins(self, default_config, routing_table, make_response):
        """Test lifecycle calls follow the most recent placement of a name."""
        from medea.server.balancer import BalancerServer
        from medea.balancer.orchestrator import SubmissionOrchestrator
        from medea.balancer.proxy import LifecycleProxy
        from medea.scout.client import LocalPlacement
        from medea.scout.selector import PlacementSelector

        # Every submission comes back as wf-same
        cluster_session = MagicMock()
        cluster_session.request.side_effect = lambda method, url, **kw: make_response(
            201 if method == "POST" else 200,
            {"metadata": {"name": "wf-same"}, "url": url},
        )

        prober = MagicMock()
        snapshots = iter([
            ({"http://c1": 8}, {"http://c1": 8}),
            ({"http://c3": 8}, {"http://c3": 8}),
        ])
        prober.snapshot.side_effect = lambda ns: next(snapshots)

        orchestrator = SubmissionOrchestrator(
            LocalPlacement(prober, PlacementSelector(random.Random(0))),
            routing_table,
            session=cluster_session,
        )
        proxy = LifecycleProxy(routing_table, session=cluster_session)
        client = TestClient(BalancerServer(
            default_config, routing_table=routing_table, orchestrator=orchestrator, proxy=proxy
        ).app)

        body = submission(["driver_memory_limit=1g"])
        assert client.post("/api/v1/workflows/ns1/submit", content=body).status_code == 201
        assert client.post("/api/v1/workflows/ns1/submit", content=body).status_code == 201

        r = client.get("/api/v1/workflows/ns1/wf-same")

        assert r.json()["url"] == "http://c3/api/v1/workflows/ns1/wf-same"
        assert routing_table.count() == 2
