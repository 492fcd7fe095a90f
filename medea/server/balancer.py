"""
Medea Balancer - single entry point for workflow submissions.

This module implements the balancer, a FastAPI server that hides the cluster
topology from its callers.

Part A, creation:
- POST /api/v1/workflows/{namespace}/submit
  computes the resources the workflow needs, asks the scout for a cluster,
  forwards the body to that cluster and records where the workflow went.

Part B, status / deletion / stopping:
- GET    /api/v1/workflows/{namespace}/{workflowName}
- DELETE /api/v1/workflows/{namespace}/{workflowName}
- PUT    /api/v1/workflows/{namespace}/{workflowName}/stop
  looks the workflow up in the routing table and proxies the request.

Housekeeping:
- GET /status  submission counters and routing table size
- GET /routes  routing records, newest first

Error answers use FastAPI's {"detail": ...} body.
"""

import requests
import uvicorn
from typing import Optional, Dict, Any
from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool

from medea.errors import MedeaError, PersistenceError
from medea.utils.config import Config
from medea.utils.logging import get_logger
from medea.scout.client import ScoutClient
from medea.state.store import RoutingTable
from medea.balancer.forward import ForwardedResponse
from medea.balancer.orchestrator import SubmissionOrchestrator
from medea.balancer.proxy import LifecycleProxy

log = get_logger("server.balancer")

WORKFLOW_PATH = "/api/v1/workflows/{namespace}/{workflow_name}"


def _relay(resp: ForwardedResponse) -> Response:
    return Response(content=resp.body, status_code=resp.status_code, media_type=resp.content_type)


def _http_error(e: MedeaError) -> HTTPException:
    if e.status_code >= 500:
        log.error(f"{type(e).__name__}: {e}")
    else:
        log.info(f"{type(e).__name__}: {e}")
    return HTTPException(status_code=e.status_code, detail=str(e))


def _raw_path(request: Request) -> str:
    """Request path exactly as the caller sent it (still percent-encoded)."""
    raw = request.scope.get("raw_path")
    if not raw:
        return request.url.path
    return raw.split(b"?", 1)[0].decode("latin-1")


class BalancerServer:
    """
    Balancer server wiring the orchestrator and the proxy to HTTP routes.

    The routing table is initialised on construction; failing to do so is
    fatal for the process. Collaborators can be injected for testing.
    """

    def __init__(self,
                 config: Config,
                 routing_table: Optional[RoutingTable] = None,
                 orchestrator: Optional[SubmissionOrchestrator] = None,
                 proxy: Optional[LifecycleProxy] = None):
        """
        :param config: Validated Medea configuration.
        :param routing_table: Routing table (default: sqlite at store.path).
        :param orchestrator: Submission orchestrator (default: backed by the scout service).
        :param proxy: Lifecycle proxy (default: backed by the routing table).
        :raises PersistenceError: If the routing table cannot be initialised.
        """
        self.config = config
        self.host = config.balancer.host
        self.port = config.balancer.port
        auth_header = config.balancer.auth_header

        self.routing_table = routing_table or RoutingTable(
            config.store.db_path, timeout=config.store.timeout
        )
        self.routing_table.init_db()

        session = requests.Session()
        self.orchestrator = orchestrator or SubmissionOrchestrator(
            placement=ScoutClient(
                config.balancer.scout_url,
                timeout=config.balancer.scout_timeout,
                session=session,
            ),
            routing_table=self.routing_table,
            forward_timeout=config.balancer.forward_timeout,
            auth_header=auth_header,
            session=session,
        )
        self.proxy = proxy or LifecycleProxy(
            self.routing_table,
            timeout=config.balancer.forward_timeout,
            auth_header=auth_header,
            session=session,
        )

        log.info(f"Medea balancer initializing on port {self.port}")

        self.app = FastAPI(title="Medea Balancer")

        @self.app.post("/api/v1/workflows/{namespace}/submit")
        async def submit(namespace: str, request: Request) -> Response:
            """
            Submit a workflow to the cluster with enough free capacity.

            :param namespace: Namespace the workflow is submitted to.
            :return: The downstream cluster's answer, unchanged.
            """
            body = await request.body()
            try:
                resp = await run_in_threadpool(
                    self.orchestrator.submit,
                    namespace,
                    body,
                    request.headers.get(auth_header),
                )
            except MedeaError as e:
                raise _http_error(e)
            return _relay(resp)

        async def lifecycle(namespace: str, workflow_name: str, request: Request) -> Response:
            body = await request.body()
            try:
                resp = await run_in_threadpool(
                    self.proxy.forward,
                    request.method,
                    namespace,
                    workflow_name,
                    _raw_path(request),
                    request.url.query,
                    body,
                    request.headers.get(auth_header),
                    request.headers.get("Content-Type"),
                )
            except MedeaError as e:
                raise _http_error(e)
            return _relay(resp)

        self.app.add_api_route(WORKFLOW_PATH, lifecycle, methods=["GET", "DELETE"])
        self.app.add_api_route(WORKFLOW_PATH + "/stop", lifecycle, methods=["PUT"])

        @self.app.get("/status")
        def status() -> Dict[str, Any]:
            """
            Get balancer status.

            routing_write_failures counts workflows that were accepted by a
            cluster but could not be recorded.

            :return: Dictionary with submission counters and routing table size.
            """
            try:
                records = self.routing_table.count()
            except PersistenceError as e:
                log.warning(f"Cannot count routing records: {e}")
                records = None
            return {
                "running": True,
                "service": "balancer",
                "port": self.port,
                "scout_url": config.balancer.scout_url,
                "submissions": self.orchestrator.stats,
                "routing_records": records,
            }

        @self.app.get("/routes")
        def routes(namespace: Optional[str] = None,
                   workflow: Optional[str] = None,
                   limit: int = 100) -> Dict[str, Any]:
            """
            List routing records, newest first.

            :param namespace: Optional namespace filter.
            :param workflow: Optional workflow name filter.
            :param limit: Maximum number of records.
            """
            try:
                records = self.routing_table.list_records(
                    namespace=namespace, workflow_name=workflow, limit=limit
                )
            except PersistenceError as e:
                raise _http_error(e)
            return {"routes": [r.to_dict() for r in records]}

    def start(self) -> None:
        """
        Start the balancer server and block until it is stopped.
        """
        log.info("Medea balancer started. Waiting for requests...")
        uvicorn.run(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
        )
