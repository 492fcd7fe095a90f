"""Balancer: submission orchestration and lifecycle proxying."""

from medea.balancer.forward import ForwardedResponse
from medea.balancer.orchestrator import SubmissionOrchestrator, SubmitRequest
from medea.balancer.proxy import LifecycleProxy

__all__ = ["ForwardedResponse", "SubmissionOrchestrator", "SubmitRequest", "LifecycleProxy"]
