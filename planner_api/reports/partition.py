"""Free-preview partitioning of report documents.

partition() is pure: the same (document, is_entitled) pair always yields an
identical view, so repeated GETs of an unpaid report are byte-for-byte
stable.

Preview rules:
  - overview        : kept in full
  - timeline        : first ceil(N * 0.6) periods, original order, events intact
  - next steps      : first-priority entry only, plus "X of Y shown" teaser
"""

from planner_api.reports.models import NextStep, ReportDocument

# ceil(N * 3 / 5) in integer arithmetic; float 0.6 is not exact.
PREVIEW_PERIOD_NUMERATOR = 3
PREVIEW_PERIOD_DENOMINATOR = 5


def preview_period_count(total: int) -> int:
    """Number of timeline periods visible in the free view."""
    if total <= 0:
        return 0
    return -(-total * PREVIEW_PERIOD_NUMERATOR // PREVIEW_PERIOD_DENOMINATOR)


def first_priority_step(steps: tuple[NextStep, ...]) -> tuple[NextStep, ...]:
    """Lowest priority number wins; ties keep document order."""
    if not steps:
        return ()
    best = min(range(len(steps)), key=lambda i: (steps[i].priority, i))
    return (steps[best],)


def next_steps_teaser(shown: int, total: int) -> str:
    return f"{shown} of {total} next steps shown. Unlock the full report to see all recommendations."


def partition(document: ReportDocument, is_entitled: bool) -> ReportDocument:
    """Return the view of `document` the caller is entitled to see."""
    if is_entitled:
        return document

    visible_periods = document.timeline[: preview_period_count(len(document.timeline))]
    visible_steps = first_priority_step(document.next_steps)
    total_steps = len(document.next_steps)

    return document.model_copy(
        update={
            "timeline": visible_periods,
            "next_steps": visible_steps,
            "is_preview": True,
            "next_steps_teaser": (
                next_steps_teaser(len(visible_steps), total_steps)
                if total_steps > len(visible_steps)
                else None
            ),
        }
    )
