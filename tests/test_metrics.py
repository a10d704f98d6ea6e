from __future__ import annotations

import pytest

from mentorlink.monitoring.registry import MetricsRegistry


def test_render_includes_help_type_and_samples() -> None:
    registry = MetricsRegistry()
    events = registry.counter("events_total", "Events seen.", label_names=("direction", "type"))
    open_connections = registry.gauge("open_connections", "Open sockets.")

    events.labels("in", "new_message").inc()
    events.labels("in", "new_message").inc(2)
    events.labels("out", 'say "hi"').inc()
    open_connections.inc()
    open_connections.inc()
    open_connections.dec()

    text = registry.render()
    assert "# HELP events_total Events seen." in text
    assert "# TYPE events_total counter" in text
    assert 'events_total{direction="in",type="new_message"} 3' in text
    assert 'events_total{direction="out",type="say \\"hi\\""} 1' in text
    assert "# TYPE open_connections gauge" in text
    assert "open_connections 1" in text


def test_unused_metric_renders_zero() -> None:
    registry = MetricsRegistry()
    registry.counter("idle_total", "Nothing yet.")
    assert "idle_total 0" in registry.render()


def test_label_arity_and_counter_semantics() -> None:
    registry = MetricsRegistry()
    counter = registry.counter("calls_total", "Calls.", label_names=("status",))
    with pytest.raises(ValueError):
        counter.labels()
    with pytest.raises(ValueError):
        counter.labels("active").inc(-1)
    with pytest.raises(AttributeError):
        counter.labels("active").set(3)
    with pytest.raises(ValueError):
        registry.counter("calls_total", "Duplicate.")
    assert counter.value("active") == 0.0
