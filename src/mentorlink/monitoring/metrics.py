"""Metric definitions for the realtime client."""

from __future__ import annotations

from .registry import registry

realtime_events_total = registry.counter(
    "realtime_events_total",
    "Count of realtime frames sent or dispatched by the client.",
    label_names=("direction", "type"),
)

realtime_send_failures_total = registry.counter(
    "realtime_send_failures_total",
    "Number of outbound realtime commands that could not be written.",
    label_names=("reason",),
)

realtime_connections = registry.gauge(
    "realtime_active_connections",
    "Number of realtime connections currently open by this process.",
)

call_transitions_total = registry.counter(
    "call_transitions_total",
    "Call state machine transitions by target status.",
    label_names=("status",),
)

ice_config_fallbacks_total = registry.counter(
    "ice_config_fallbacks_total",
    "Number of calls that fell back to STUN-only ICE servers.",
)

attachment_rejections_total = registry.counter(
    "attachment_rejections_total",
    "Attachments rejected before upload, by violated constraint.",
    label_names=("constraint",),
)
