"""
Submission orchestration for the Medea balancer.

A workflow submission goes through these states:

    RECEIVED -> VALIDATED -> PLACED -> FORWARDED -> (PERSISTED) -> COMPLETED

with failure exits VALIDATION_FAILED (ValidationError), PLACEMENT_FAILED
(UpstreamError, PlacementNotFound) and FORWARD_FAILED (ForwardError).

The original request body is forwarded byte for byte to the chosen cluster.
Only a 2xx answer that names the created workflow produces a routing record,
and the record is written after the cluster has accepted the job. A failed
write is logged and counted but does not change the answer returned to the
caller: the job runs, it just cannot be located through the balancer until
an operator reconciles the routing table.
"""

import enum
import json
import threading
import requests
from typing import Dict, List, Optional, Protocol
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as SchemaError

from medea.errors import ValidationError, PersistenceError
from medea.core.resources import ResourceRequirement, calculate_resources
from medea.state.store import RoutingRecord, RoutingTable
from medea.balancer.forward import ForwardedResponse, send, DEFAULT_CONTENT_TYPE
from medea.utils.misc import join_url
from medea.utils.logging import get_logger

log = get_logger("balancer.orchestrator")


class SubmitOptions(BaseModel):
    """submitOptions of a workflow submission."""
    labels: Optional[str] = None
    parameters: List[str] = []

    @field_validator("parameters", mode="before")
    @classmethod
    def _null_parameters(cls, value):
        return [] if value is None else value


class SubmitRequest(BaseModel):
    """Workflow submission body, as accepted by the downstream clusters."""
    model_config = ConfigDict(populate_by_name=True)

    resource_kind: str = Field("", alias="resourceKind")
    resource_name: str = Field("", alias="resourceName")  # workflow template
    submit_options: SubmitOptions = Field(default_factory=SubmitOptions, alias="submitOptions")

    # JSON null means "not given"
    @field_validator("resource_kind", "resource_name", mode="before")
    @classmethod
    def _null_names(cls, value):
        return "" if value is None else value

    @field_validator("submit_options", mode="before")
    @classmethod
    def _null_options(cls, value):
        return SubmitOptions() if value is None else value


class SubmissionState(str, enum.Enum):
    RECEIVED = "received"
    VALIDATED = "validated"
    PLACED = "placed"
    FORWARDED = "forwarded"
    PERSISTED = "persisted"
    COMPLETED = "completed"
    VALIDATION_FAILED = "validation_failed"
    PLACEMENT_FAILED = "placement_failed"
    FORWARD_FAILED = "forward_failed"


class Placement(Protocol):
    def place(self, namespace: str, requirement: ResourceRequirement) -> str:
        ...


def submit_path(namespace: str) -> str:
    return f"/api/v1/workflows/{namespace}/submit"


def parse_submission(body: bytes) -> SubmitRequest:
    """
    Decode a submission body.

    :raises ValidationError: If the body is not valid JSON or does not match
                             the submission schema.
    """
    try:
        return SubmitRequest.model_validate_json(body)
    except SchemaError as e:
        raise ValidationError(f"Invalid JSON: {e.errors()[0].get('msg', 'malformed body')}") from e


def assigned_name(body: bytes) -> Optional[str]:
    """Return metadata.name from a cluster's JSON answer, if there is one."""
    try:
        data = json.loads(body)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None
    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        return None
    name = metadata.get("name")
    return name if isinstance(name, str) and name else None


class SubmissionOrchestrator:
    """
    Places a submission on a cluster, forwards it and records the placement.

    Collaborators are injected: the placement source (scout client or local
    prober/selector), the routing table and the outbound HTTP session.
    """

    def __init__(self,
                 placement: Placement,
                 routing_table: RoutingTable,
                 forward_timeout: float = 10.0,
                 auth_header: str = "tuz",
                 session: Optional[requests.Session] = None):
        """
        :param placement: Object exposing place(namespace, requirement) -> cluster.
        :param routing_table: Store receiving a record per accepted workflow.
        :param forward_timeout: Seconds before the cluster call is abandoned.
        :param auth_header: Header carrying the caller's token.
        :param session: Optional requests session (shared connection pool).
        """
        self.placement = placement
        self.routing_table = routing_table
        self.forward_timeout = forward_timeout
        self.auth_header = auth_header
        self.session = session or requests.Session()

        self._lock = threading.Lock()
        self._stats = {
            "submitted": 0,
            "forwarded": 0,
            "rejected_downstream": 0,
            "persisted": 0,
            "routing_write_failures": 0,
        }

    @property
    def stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._stats)

    def _count(self, key: str) -> None:
        with self._lock:
            self._stats[key] += 1

    def _transition(self, namespace: str, state: SubmissionState) -> None:
        log.debug(f"Submission in {namespace}: {state.value}")

    def submit(self, namespace: str, body: bytes, auth_token: Optional[str] = None) -> ForwardedResponse:
        """
        Run one submission to completion.

        :param namespace: Namespace from the request path.
        :param body: Raw request body, forwarded unmodified.
        :param auth_token: Value of the caller's auth header, relayed as is.
        :return: The downstream cluster's status, body and content type.
        :raises ValidationError: Malformed body or memory parameter without unit.
        :raises UpstreamError: The placement source could not be queried.
        :raises PlacementNotFound: No cluster has enough capacity.
        :raises ForwardError: The chosen cluster could not be reached.
        """
        self._count("submitted")
        self._transition(namespace, SubmissionState.RECEIVED)

        try:
            request = parse_submission(body)
            requirement = calculate_resources(request.submit_options.parameters)
        except ValidationError:
            self._transition(namespace, SubmissionState.VALIDATION_FAILED)
            raise
        self._transition(namespace, SubmissionState.VALIDATED)
        log.info(f"Required resources for workflow: CPU={requirement.cpu:.2f}, RAM={requirement.ram:.2f} GB")

        try:
            cluster = self.placement.place(namespace, requirement)
        except Exception:
            self._transition(namespace, SubmissionState.PLACEMENT_FAILED)
            raise
        self._transition(namespace, SubmissionState.PLACED)
        log.info(f"Placing {request.resource_name or 'workflow'} in {namespace} on {cluster}")

        try:
            response = send(
                self.session,
                "POST",
                join_url(cluster, submit_path(namespace)),
                body,
                {"Content-Type": DEFAULT_CONTENT_TYPE, self.auth_header: auth_token},
                self.forward_timeout,
            )
        except Exception:
            self._transition(namespace, SubmissionState.FORWARD_FAILED)
            raise
        self._count("forwarded")
        self._transition(namespace, SubmissionState.FORWARDED)

        if response.ok:
            self._record(request, namespace, cluster, response)
        else:
            self._count("rejected_downstream")
            log.info(f"Cluster {cluster} rejected submission with status {response.status_code}")

        if not response.content_type:
            response.content_type = DEFAULT_CONTENT_TYPE
        self._transition(namespace, SubmissionState.COMPLETED)
        return response

    def _record(self, request: SubmitRequest, namespace: str, cluster: str, response: ForwardedResponse) -> None:
        name = assigned_name(response.body)
        if name is None:
            log.warning(f"Cluster {cluster} accepted a submission in {namespace} without naming it; not recorded")
            return

        record = RoutingRecord(
            workflow_name=name,
            workflow_template=request.resource_name,
            namespace=namespace,
            cluster=cluster,
        )
        try:
            self.routing_table.put(record)
        except PersistenceError as e:
            self._count("routing_write_failures")
            log.error(
                f"Routing record lost: workflow={name} namespace={namespace} cluster={cluster}: {e}"
            )
            return

        self._count("persisted")
        self._transition(namespace, SubmissionState.PERSISTED)
