"""
Lifecycle proxy for status, stop and delete requests.

The owning cluster of a workflow is looked up in the routing table on every
request (no caching) and the caller's method, path, query string and body
are reissued against it. The cluster's status, content type and body are
relayed unchanged.
"""

import requests
from typing import Optional

from medea.state.store import RoutingTable
from medea.balancer.forward import ForwardedResponse, send
from medea.utils.misc import join_url
from medea.utils.logging import get_logger

log = get_logger("balancer.proxy")


class LifecycleProxy:
    """Forwards non-creation requests to the cluster recorded for a workflow."""

    def __init__(self,
                 routing_table: RoutingTable,
                 timeout: float = 10.0,
                 auth_header: str = "tuz",
                 session: Optional[requests.Session] = None):
        self.routing_table = routing_table
        self.timeout = timeout
        self.auth_header = auth_header
        self.session = session or requests.Session()

    def forward(self,
                method: str,
                namespace: str,
                workflow_name: str,
                path: str,
                query: str = "",
                body: bytes = b"",
                auth_token: Optional[str] = None,
                content_type: Optional[str] = None) -> ForwardedResponse:
        """
        Reissue a lifecycle request against the owning cluster.

        :param method: HTTP method of the caller (GET, DELETE, PUT).
        :param namespace: Namespace from the request path.
        :param workflow_name: Workflow name from the request path.
        :param path: Full request path, reused as is on the cluster.
        :param query: Raw query string, appended unchanged.
        :param body: Raw request body.
        :param auth_token: Value of the caller's auth header.
        :param content_type: Caller's Content-Type header.
        :return: The cluster's answer.
        :raises RoutingNotFound: If no routing record exists for the workflow.
        :raises PersistenceError: If the routing table cannot be read.
        :raises ForwardError: If the cluster cannot be reached.
        """
        cluster = self.routing_table.resolve(workflow_name, namespace)
        url = join_url(cluster, path, query)
        log.debug(f"Proxying {method} {path} for {workflow_name} to {cluster}")

        return send(
            self.session,
            method,
            url,
            body,
            {self.auth_header: auth_token, "Content-Type": content_type},
            self.timeout,
        )
