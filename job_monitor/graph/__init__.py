"""Query resolvers behind the job/metrics query API."""

from .resolver import Resolver

__all__ = ["Resolver"]
