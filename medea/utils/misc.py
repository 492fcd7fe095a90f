"""
Miscellaneous helpers shared by the services and the CLI.

Key utilities:
- service_url: Construct the local URL of a Medea service
- join_url: Join a cluster base URL with an API path
- parse_error_response: Parse response JSON in case of error
"""

from typing import Optional


def service_url(port: int, host: str = "localhost") -> str:
    """
    Construct the base URL of a locally running service.

    :param port: Port number where the service is listening.
    :param host: Host name, localhost by default.
    :return: Full base URL for API requests.
    """
    return f"http://{host}:{port}"


def join_url(base: str, path: str, query: Optional[str] = None) -> str:
    """
    Append an API path, and optionally a raw query string, to a base URL.

    The query string is appended unchanged so that proxied requests carry
    exactly what the caller sent.

    :param base: Cluster or service base URL (with or without trailing slash).
    :param path: Absolute API path, e.g. /api/v1/workflows/ns/wf.
    :param query: Raw query string without the leading '?'.
    :return: Combined URL.
    """
    url = base.rstrip("/") + "/" + path.lstrip("/")
    if query:
        url += "?" + query
    return url


def parse_error_response(resp) -> str:
    """Parse error response, handling JSON and plain text."""
    try:
        data = resp.json()
        if isinstance(data, dict):
            return data.get("detail") or data.get("error") or data.get("message") or str(data)
        return str(data)
    except ValueError:
        pass

    # Truncate long responses
    return resp.text.strip()[:500]
