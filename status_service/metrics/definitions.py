"""Metric definitions used across the status service."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

STATUS_UPDATES_TOTAL = "status_updates_total"
STATUS_TRANSITIONS_REJECTED_TOTAL = "status_transitions_rejected_total"
STATUS_DUPLICATES_SUPPRESSED_TOTAL = "status_duplicates_suppressed_total"
STATUS_NOTIFICATIONS_PUBLISHED_TOTAL = "status_notifications_published_total"
STATUS_NOTIFICATIONS_SUPPRESSED_TOTAL = "status_notifications_suppressed_total"
STATUS_UPDATE_DURATION_SECONDS = "status_update_duration_seconds"
TICKET_EVENTS_CONSUMED_TOTAL = "ticket_events_consumed_total"


@dataclass(frozen=True)
class MetricDefinition:
    """Describe a metric that should exist in the registry."""

    name: str
    metric_type: str
    description: str
    label_names: Tuple[str, ...] = ()


DEFAULT_METRIC_DEFINITIONS: Tuple[MetricDefinition, ...] = (
    MetricDefinition(
        name=STATUS_UPDATES_TOTAL,
        metric_type="counter",
        description="Status updates applied, by entry point and outcome.",
        label_names=("source", "outcome"),
    ),
    MetricDefinition(
        name=STATUS_TRANSITIONS_REJECTED_TOTAL,
        metric_type="counter",
        description="Updates rejected because the transition is not allowed.",
        label_names=("source",),
    ),
    MetricDefinition(
        name=STATUS_DUPLICATES_SUPPRESSED_TOTAL,
        metric_type="counter",
        description="Updates collapsed into the previous history entry.",
        label_names=("source",),
    ),
    MetricDefinition(
        name=STATUS_NOTIFICATIONS_PUBLISHED_TOTAL,
        metric_type="counter",
        description="Change notifications published to the event feed.",
    ),
    MetricDefinition(
        name=STATUS_NOTIFICATIONS_SUPPRESSED_TOTAL,
        metric_type="counter",
        description="Change notifications withheld by loop prevention.",
        label_names=("source",),
    ),
    MetricDefinition(
        name=STATUS_UPDATE_DURATION_SECONDS,
        metric_type="distribution",
        description="Duration of status updates in seconds.",
        label_names=("source",),
    ),
    MetricDefinition(
        name=TICKET_EVENTS_CONSUMED_TOTAL,
        metric_type="counter",
        description="Inbound ticket events by type and consumer outcome.",
        label_names=("event_type", "outcome"),
    ),
)
