"""OpenTelemetry instrumentation and observability utilities."""

from restaurant_ordering.observability.config import configure_logging, setup_observability
from restaurant_ordering.observability.decorators import traced

__all__ = ["setup_observability", "configure_logging", "traced"]
