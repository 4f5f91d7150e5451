"""Session event logging helpers."""

from .logger import MetricAggregator, log_entry, log_record, metrics_aggregator

__all__ = ["MetricAggregator", "log_entry", "log_record", "metrics_aggregator"]
