"""In-process metrics for the status service."""
from .base import CounterMetric, DistributionMetric, track_duration
from .definitions import DEFAULT_METRIC_DEFINITIONS, MetricDefinition
from .exporters import PROMETHEUS_CONTENT_TYPE, PrometheusExporter
from .registry import MetricsRegistry

metrics_registry = MetricsRegistry()

_FACTORIES = {
    "counter": MetricsRegistry.counter,
    "distribution": MetricsRegistry.distribution,
}


def register_default_metrics(registry: MetricsRegistry | None = None) -> MetricsRegistry:
    """Create every default metric in ``registry`` (or the global one) and return it."""
    target = registry if registry is not None else metrics_registry
    for definition in DEFAULT_METRIC_DEFINITIONS:
        factory = _FACTORIES.get(definition.metric_type)
        if factory is None:
            raise ValueError(f"Unsupported metric type: {definition.metric_type}")
        factory(target, definition.name, description=definition.description, label_names=definition.label_names)
    return target


register_default_metrics()

__all__ = [
    "CounterMetric",
    "DistributionMetric",
    "MetricDefinition",
    "MetricsRegistry",
    "PROMETHEUS_CONTENT_TYPE",
    "PrometheusExporter",
    "metrics_registry",
    "register_default_metrics",
    "track_duration",
]
