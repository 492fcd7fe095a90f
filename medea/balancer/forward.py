"""
Outbound calls to downstream clusters.

Both the submission orchestrator and the lifecycle proxy reissue the caller's
request against a cluster and hand the cluster's answer back unchanged. The
call is bounded by a timeout and never retried.
"""

import requests
from dataclasses import dataclass
from typing import Dict, Optional

from medea.errors import ForwardError
from medea.utils.logging import get_logger

log = get_logger("balancer.forward")

DEFAULT_CONTENT_TYPE = "application/json"


@dataclass
class ForwardedResponse:
    """Status, body and content type received from a downstream cluster."""

    status_code: int
    body: bytes
    content_type: Optional[str] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


def send(session: requests.Session,
         method: str,
         url: str,
         body: bytes,
         headers: Dict[str, str],
         timeout: float) -> ForwardedResponse:
    """
    Issue one request to a downstream cluster.

    :param session: Shared requests session.
    :param method: HTTP method to reissue.
    :param url: Full target URL including any query string.
    :param body: Raw request body, sent unmodified.
    :param headers: Headers to send; entries with empty values are left out.
    :param timeout: Seconds before the call is abandoned.
    :return: The downstream response.
    :raises ForwardError: If the cluster cannot be reached or the call times out.
    """
    headers = {k: v for k, v in headers.items() if v}
    try:
        resp = session.request(
            method,
            url,
            data=body or None,
            headers=headers,
            timeout=timeout,
        )
    except requests.exceptions.RequestException as e:
        log.error(f"Request error to {method} {url}: {e}")
        raise ForwardError(f"Failed to contact target cluster: {e}") from e

    return ForwardedResponse(
        status_code=resp.status_code,
        body=resp.content,
        content_type=resp.headers.get("Content-Type"),
    )
