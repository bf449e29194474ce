"""Metric data subpackage: backend clients and the metric archiver."""

from .archiver import MetricArchiver, compute_statistics
from .base import REPOSITORY_KINDS, MetricDataRepositories, MetricDataRepository
from .ccmetricstore import CCMetricStore

__all__ = [
    "CCMetricStore",
    "MetricArchiver",
    "MetricDataRepositories",
    "MetricDataRepository",
    "REPOSITORY_KINDS",
    "compute_statistics",
]
