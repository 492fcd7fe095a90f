"""
Medea Scout - capacity query service.

This module implements the scout service, a small FastAPI server that answers
"which cluster can take this much CPU and RAM in this namespace?".

For every request it:
1. Queries Prometheus for the free CPU of the namespace on every cluster
2. Queries Prometheus for the free RAM (gigabytes) of the namespace
3. Keeps the clusters with enough of both
4. Returns one of them at random

Endpoints:
- POST /api/request  {namespace, cpu, ram} -> {cluster}
- GET  /status       service configuration and request counters

Status codes: 200 with a cluster, 404 when no cluster fits, 500 when
Prometheus cannot be queried, 400 for a malformed body, 405 for a wrong
method.
"""

import random
import threading
import uvicorn
import requests
from pydantic import BaseModel
from typing import Optional, Dict, Any
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from medea.errors import PlacementNotFound, UpstreamError
from medea.utils.config import Config
from medea.utils.logging import get_logger
from medea.core.resources import ResourceRequirement
from medea.scout.prober import CapacityProber
from medea.scout.selector import PlacementSelector

log = get_logger("server.scout")


class ScoutRequest(BaseModel):
    """Request model for a capacity query."""
    namespace: str
    cpu: float = 0.0
    ram: float = 0.0  # gigabytes


class ScoutResponse(BaseModel):
    """Response model carrying the selected cluster."""
    cluster: str


async def _invalid_body(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": "Invalid JSON"})


class ScoutServer:
    """
    Scout server answering placement queries from Prometheus capacity data.

    The prober and selector can be injected for testing; by default they are
    built from the scout section of the configuration.
    """

    def __init__(self,
                 config: Config,
                 prober: Optional[CapacityProber] = None,
                 selector: Optional[PlacementSelector] = None):
        """
        :param config: Validated Medea configuration.
        :param prober: Capacity prober (default: Prometheus at scout.prometheus_url).
        :param selector: Placement selector (default: seeded from scout.seed).
        """
        self.config = config
        self.host = config.scout.host
        self.port = config.scout.port

        self.prober = prober or CapacityProber(
            config.scout.prometheus_url,
            timeout=config.scout.query_timeout,
            session=requests.Session(),
        )
        self.selector = selector or PlacementSelector(random.Random(config.scout.seed))

        self._lock = threading.Lock()
        self._counts = {"requests": 0, "placed": 0, "not_found": 0, "upstream_errors": 0}

        log.info(f"Medea scout initializing on port {self.port}")

        self.app = FastAPI(title="Medea Scout")
        self.app.add_exception_handler(RequestValidationError, _invalid_body)

        @self.app.post("/api/request", response_model=ScoutResponse)
        def request_cluster(req: ScoutRequest) -> ScoutResponse:
            """
            Select a cluster with enough free capacity.

            :param req: Namespace and required CPU cores / RAM gigabytes.
            :return: The selected cluster.
            """
            self._count("requests")
            requirement = ResourceRequirement(cpu=req.cpu, ram=req.ram)

            try:
                cpu, ram = self.prober.snapshot(req.namespace)
                cluster = self.selector.select(requirement, cpu, ram)
            except UpstreamError as e:
                self._count("upstream_errors")
                log.error(f"Prometheus communication error: {e}")
                raise HTTPException(status_code=500, detail="Prometheus communication error")
            except PlacementNotFound as e:
                self._count("not_found")
                log.info(f"{e} (namespace {req.namespace})")
                raise HTTPException(status_code=404, detail="No suitable clusters found")

            self._count("placed")
            log.info(f"Namespace {req.namespace}: cpu={req.cpu:g} ram={req.ram:g}GB -> {cluster}")
            return ScoutResponse(cluster=cluster)

        @self.app.get("/status")
        def status() -> Dict[str, Any]:
            """
            Get scout status.

            :return: Dictionary with the metrics backend address and request counters.
            """
            with self._lock:
                counts = dict(self._counts)
            return {
                "running": True,
                "service": "scout",
                "port": self.port,
                "prometheus_url": self.prober.prometheus_url,
                "requests": counts,
            }

    def _count(self, key: str) -> None:
        with self._lock:
            self._counts[key] += 1

    def start(self) -> None:
        """
        Start the scout server and block until it is stopped.
        """
        log.info(f"Medea scout starting on :{self.port} (Prometheus: {self.prober.prometheus_url})")
        uvicorn.run(
            self.app,
            host=self.host,
            port=self.port,
            log_level="warning",
        )
