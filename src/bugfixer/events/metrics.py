"""Prometheus metrics for the bug fixer.

Metrics Defined:
- bugfixer_proposals_created_total: Counter of stored fix proposals
- bugfixer_no_fix_total: Counter of no-fix decisions
- bugfixer_proposals_applied_total: Counter of proposals turned into PRs
- bugfixer_failures_total: Counter of pipeline failures by stage
- bugfixer_apply_duration_seconds: Histogram of approve-to-PR duration
- bugfixer_proposals_by_status: Gauge of proposals per lifecycle status

The MetricsEventEmitter updates these from events, and
generate_metrics_output renders them for the /metrics endpoint.
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from src.bugfixer.events.emitter import EventEmitter
from src.bugfixer.events.models import EventType, PipelineEvent
from src.bugfixer.proposals.models import ProposalStatus


logger = logging.getLogger(__name__)


# Clone, patch, lint/build/test and PR creation: seconds to tens of minutes
DEFAULT_DURATION_BUCKETS = (
    5.0,
    15.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1200.0,
    1800.0,
)


class BugFixerMetrics:
    """Container for all bug fixer Prometheus metrics.

    Pass a dedicated CollectorRegistry in tests to avoid duplicate
    registration against the process-wide default registry.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.proposals_created_total = Counter(
            "bugfixer_proposals_created_total",
            "Total number of fix proposals created",
            labelnames=["repository"],
            registry=self.registry,
        )

        self.no_fix_total = Counter(
            "bugfixer_no_fix_total",
            "Total number of issues analyzed without a fix proposal",
            labelnames=["repository"],
            registry=self.registry,
        )

        self.proposals_applied_total = Counter(
            "bugfixer_proposals_applied_total",
            "Total number of proposals applied and published as pull requests",
            labelnames=["repository"],
            registry=self.registry,
        )

        self.failures_total = Counter(
            "bugfixer_failures_total",
            "Total number of pipeline failures",
            labelnames=["repository", "stage"],
            registry=self.registry,
        )

        self.apply_duration_seconds = Histogram(
            "bugfixer_apply_duration_seconds",
            "Time from approval to pull request in seconds",
            labelnames=["repository"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

        self.proposals_by_status = Gauge(
            "bugfixer_proposals_by_status",
            "Number of proposals currently in each lifecycle status",
            labelnames=["status"],
            registry=self.registry,
        )

        for status in ProposalStatus:
            self.proposals_by_status.labels(status=status.value).set(0)

    def move_status(self, from_status: Optional[str], to_status: Optional[str]) -> None:
        """Shift one proposal between status buckets."""
        known = {status.value for status in ProposalStatus}
        if from_status in known:
            self.proposals_by_status.labels(status=from_status).dec()
        if to_status in known:
            self.proposals_by_status.labels(status=to_status).inc()


_default_metrics: Optional[BugFixerMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> BugFixerMetrics:
    """Get the process-wide metrics, or a fresh set for a custom registry."""
    global _default_metrics

    if registry is not None:
        return BugFixerMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = BugFixerMetrics()

    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Render metrics in Prometheus text format."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - PROPOSAL_CREATED: created counter, pending gauge
    - NO_FIX: no-fix counter
    - STATE_TRANSITION: status gauges
    - ERROR: failures counter by stage
    - COMPLETION: applied counter, apply duration
    """

    def __init__(
        self,
        metrics: Optional[BugFixerMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self._metrics = metrics if metrics is not None else get_metrics(registry)

    @property
    def metrics(self) -> BugFixerMetrics:
        return self._metrics

    async def emit(self, event: PipelineEvent) -> None:
        try:
            self._record(event)
        except Exception as e:
            logger.error(
                "Failed to update metrics for event",
                extra={
                    "event_type": event.event_type.value,
                    "issue_id": event.issue_id,
                    "error": str(e),
                },
            )

    def _record(self, event: PipelineEvent) -> None:
        repository = event.repository
        details = event.details

        if event.event_type == EventType.PROPOSAL_CREATED:
            self._metrics.proposals_created_total.labels(repository=repository).inc()
            self._metrics.move_status(None, ProposalStatus.PENDING.value)
        elif event.event_type == EventType.NO_FIX:
            self._metrics.no_fix_total.labels(repository=repository).inc()
        elif event.event_type == EventType.STATE_TRANSITION:
            self._metrics.move_status(details.get("from_status"), details.get("to_status"))
        elif event.event_type == EventType.ERROR:
            self._metrics.failures_total.labels(
                repository=repository,
                stage=details.get("stage", "unknown"),
            ).inc()
        elif event.event_type == EventType.COMPLETION:
            self._metrics.proposals_applied_total.labels(repository=repository).inc()
            duration = details.get("duration_seconds")
            if duration is not None:
                self._metrics.apply_duration_seconds.labels(
                    repository=repository
                ).observe(float(duration))
