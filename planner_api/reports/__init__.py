"""Report documents, storage and free-preview partitioning."""

from planner_api.reports.models import NextStep, Report, ReportDocument, TimelineEvent, TimelinePeriod
from planner_api.reports.partition import partition, preview_period_count

__all__ = [
    "NextStep",
    "Report",
    "ReportDocument",
    "TimelineEvent",
    "TimelinePeriod",
    "partition",
    "preview_period_count",
]
