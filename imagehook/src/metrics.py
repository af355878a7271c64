from __future__ import annotations

from dataclasses import dataclass, field

from prometheus_client import Counter, Gauge, Info


@dataclass(frozen=True)
class ControllerMetrics:
    """Prometheus metrics exported by the controller on ``/metrics``.

    Most series carry a ``kind`` label (``pod``, ``deployment``,
    ``statefulset``) so each watcher can be alerted on independently.
    """

    events_total: Counter = field(
        default_factory=lambda: Counter(
            "imagehook_watch_events_total",
            "Total watch events received",
            ["kind", "type"],
        )
    )
    triggers_total: Counter = field(
        default_factory=lambda: Counter(
            "imagehook_triggers_total",
            "Total pipeline webhooks dispatched",
            ["kind"],
        )
    )
    trigger_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "imagehook_trigger_errors_total",
            "Total pipeline webhook dispatches that failed",
            ["kind"],
        )
    )
    dedup_hits_total: Counter = field(
        default_factory=lambda: Counter(
            "imagehook_dedup_hits_total",
            "Total image changes suppressed because the image was already triggered",
            ["kind"],
        )
    )
    readiness_timeouts_total: Counter = field(
        default_factory=lambda: Counter(
            "imagehook_readiness_timeouts_total",
            "Total Pod events dropped because the Pod did not become Ready in time",
        )
    )
    watch_errors_total: Counter = field(
        default_factory=lambda: Counter(
            "imagehook_watch_errors_total",
            "Total Kubernetes watch errors",
            ["kind"],
        )
    )
    watch_reconnects_total: Counter = field(
        default_factory=lambda: Counter(
            "imagehook_watch_reconnects_total",
            "Total watch stream reconnects after the initial connection",
            ["kind"],
        )
    )
    dedup_cache_size: Gauge = field(
        default_factory=lambda: Gauge(
            "imagehook_dedup_cache_size",
            "Number of image identity keys that already triggered a pipeline",
        )
    )
    build_info: Info = field(
        default_factory=lambda: Info(
            "imagehook",
            "Build information for the controller",
        )
    )


METRICS = ControllerMetrics()
