"""
Prometheus metrics module for RivoHome.

All service metrics register against a dedicated registry so the process
default collectors never leak into /metrics output.
"""

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()


def get_metrics() -> bytes:
    """Render every metric registered on REGISTRY in exposition format."""
    return generate_latest(REGISTRY)


__all__ = ["CONTENT_TYPE_LATEST", "REGISTRY", "get_metrics"]
