"""Report generation seam.

AI-backed generation lives outside this service; the default generator
builds a deterministic planning skeleton from the student profile so the
payment and preview flows work end to end without an LLM key.
"""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Optional

from planner_api.reports.models import NextStep, ReportDocument, TimelineEvent, TimelinePeriod

# Academic seasons: Winter (Jan-Feb), Spring (Mar-May), Summer (Jun-Aug), Fall (Sep-Dec)
_SEASONS = ("Winter", "Spring", "Summer", "Fall")

_SEASON_FOCUS = {
    "Winter": ("academics", "Plan next year's course load", "Pick AP/honors courses that match your intended major."),
    "Spring": ("testing", "Register for standardized tests", "Book an SAT/ACT date and build a prep schedule."),
    "Summer": ("activities", "Summer program or project", "Apply to a selective summer program or run an independent project."),
    "Fall": ("applications", "Application groundwork", "Draft essays, request recommendations and refine the college list."),
}

_DEFAULT_NEXT_STEPS = (
    ("Register for the next SAT/ACT date", "Pick a test date at least 8 weeks out and start a weekly prep plan."),
    ("Meet with your school counselor", "Review your transcript and confirm next year's course selection."),
    ("Start a Common App activities list", "List up to 10 activities with hours per week and leadership roles."),
    ("Brainstorm essay topics", "Write three 200-word sketches of experiences that shaped your interests."),
    ("Research 10 target schools", "Record GPA and test-score ranges from each school's Common Data Set."),
)


def season_for(day: date) -> str:
    if day.month <= 2:
        return "Winter"
    if day.month <= 5:
        return "Spring"
    if day.month <= 8:
        return "Summer"
    return "Fall"


def seasonal_periods(start: date, count: int) -> list[str]:
    """Season labels starting at the season containing `start`."""
    index = _SEASONS.index(season_for(start))
    year = start.year
    labels = []
    for _ in range(count):
        labels.append(f"{_SEASONS[index]} {year}")
        index += 1
        if index == len(_SEASONS):
            index = 0
            year += 1
    return labels


class ReportGenerator(ABC):
    """Turns opaque student profile data into a report document."""

    @abstractmethod
    async def generate(self, student_input: dict[str, Any]) -> ReportDocument:
        ...


class FallbackReportGenerator(ReportGenerator):
    def __init__(self, period_count: int = 6, today: Optional[date] = None):
        self.period_count = period_count
        self._today = today

    async def generate(self, student_input: dict[str, Any]) -> ReportDocument:
        today = self._today or date.today()
        name = student_input.get("studentName") or "The student"
        grade = student_input.get("currentGrade") or "high school"
        school = student_input.get("highSchool") or "their high school"
        interests = student_input.get("academicInterests")
        if isinstance(interests, list) and interests:
            interests_text = ", ".join(str(i) for i in interests)
        else:
            interests_text = student_input.get("intendedMajors") or "undeclared interests"

        overview = (
            f"{name} is a {grade} student at {school} with interests in {interests_text}. "
            "This plan lays out the next two years season by season and lists the "
            "highest-impact actions for the coming weeks."
        )

        timeline = []
        for label in seasonal_periods(today, self.period_count):
            category, title, description = _SEASON_FOCUS[label.split(" ")[0]]
            timeline.append(
                TimelinePeriod(
                    period=label,
                    events=(TimelineEvent(title=title, category=category, description=description),),
                )
            )

        next_steps = tuple(
            NextStep(title=title, description=description, priority=position)
            for position, (title, description) in enumerate(_DEFAULT_NEXT_STEPS, start=1)
        )

        return ReportDocument(overview=overview, timeline=tuple(timeline), next_steps=next_steps)
