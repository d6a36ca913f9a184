"""Report store: generated reports keyed by report id.

Process-lifetime storage only. Reports are immutable once stored, so reads
hand out the stored (frozen) model directly.
"""

import logging
import secrets
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from planner_api.errors import NotFoundError
from planner_api.reports.models import Report, ReportDocument

logger = logging.getLogger(__name__)


def new_report_id() -> str:
    return f"report_{secrets.token_hex(12)}"


class ReportStore(ABC):
    """Storage interface for generated reports."""

    @abstractmethod
    def create(self, student_input: dict[str, Any], document: ReportDocument) -> Report:
        ...

    @abstractmethod
    def get(self, report_id: str) -> Optional[Report]:
        ...

    def get_or_raise(self, report_id: str) -> Report:
        report = self.get(report_id)
        if report is None:
            raise NotFoundError(f"Report {report_id} not found", message="Report not found")
        return report

    def exists(self, report_id: str) -> bool:
        return self.get(report_id) is not None


class InMemoryReportStore(ReportStore):
    def __init__(self) -> None:
        self._reports: dict[str, Report] = {}
        self._lock = threading.Lock()

    def create(self, student_input: dict[str, Any], document: ReportDocument) -> Report:
        report = Report(
            id=new_report_id(),
            student_input=dict(student_input),
            document=document,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._reports[report.id] = report

        logger.info(
            "Report stored",
            extra={
                "event": "report.created",
                "report_id": report.id,
                "timeline_periods": len(document.timeline),
                "next_steps": len(document.next_steps),
            },
        )
        return report

    def get(self, report_id: str) -> Optional[Report]:
        with self._lock:
            return self._reports.get(report_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._reports)
