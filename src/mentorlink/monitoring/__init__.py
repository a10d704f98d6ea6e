"""Monitoring helpers and metric registry for the realtime client."""

from . import metrics, registry

__all__ = ["metrics", "registry"]
