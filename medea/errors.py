"""
Error taxonomy shared by the scout and balancer services.

Each error maps to one failure exit of a placement or lifecycle request.
The HTTP status the servers answer with is carried on the class so the
mapping lives in one place.
"""


class MedeaError(RuntimeError):
    """Base class for Medea errors."""

    status_code: int = 500


class ValidationError(MedeaError):
    """Malformed request body or a resource parameter that breaks the unit rules."""

    status_code = 400


class UpstreamError(MedeaError):
    """The metrics backend (or the scout service) could not be reached or decoded."""

    status_code = 500


class PlacementNotFound(MedeaError):
    """No cluster has enough free CPU and RAM for the requirement."""

    status_code = 404


class ForwardError(MedeaError):
    """The downstream cluster could not be reached."""

    status_code = 502


class PersistenceError(MedeaError):
    """The routing table could not be read or written."""

    status_code = 500


class RoutingNotFound(MedeaError):
    """No routing record exists for a workflow."""

    status_code = 404


class ConfigError(MedeaError):
    """The configuration file or an environment override is unusable."""
