"""Application wide metrics utilities."""
from .definitions import DEFAULT_METRIC_DEFINITIONS, MetricDefinition
from .registry import MetricsRegistry

metrics_registry = MetricsRegistry()


def register_default_metrics(registry: MetricsRegistry | None = None) -> MetricsRegistry:
    """Ensure all default metric definitions exist in the registry."""
    target = registry or metrics_registry
    for definition in DEFAULT_METRIC_DEFINITIONS:
        if definition.metric_type == "counter":
            target.counter(
                definition.name,
                description=definition.description,
                label_names=definition.label_names,
            )
        elif definition.metric_type == "distribution":
            target.distribution(
                definition.name,
                description=definition.description,
                label_names=definition.label_names,
            )
        else:
            raise ValueError(f"Unsupported metric type: {definition.metric_type}")
    return target


register_default_metrics()

__all__ = [
    "DEFAULT_METRIC_DEFINITIONS",
    "MetricDefinition",
    "MetricsRegistry",
    "metrics_registry",
    "register_default_metrics",
]
