"""Report document models.

The document is structured (overview, timeline periods, next steps) rather
than raw HTML so it can be partitioned without parsing markup. JSON field
names are camelCase on the wire.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, frozen=True)


class TimelineEvent(_WireModel):
    title: str
    category: str = "general"
    description: str = ""
    deadline: Optional[str] = None


class TimelinePeriod(_WireModel):
    period: str = Field(..., description="Academic season label, e.g. 'Spring 2025'")
    events: tuple[TimelineEvent, ...] = ()


class NextStep(_WireModel):
    title: str
    description: str = ""
    priority: int = Field(default=1, ge=1, description="1 = most urgent")


class ReportDocument(_WireModel):
    """Generated report content.

    `is_preview` and `next_steps_teaser` are only set on partitioned views.
    """

    overview: str
    timeline: tuple[TimelinePeriod, ...] = ()
    next_steps: tuple[NextStep, ...] = ()
    is_preview: bool = False
    next_steps_teaser: Optional[str] = None


class Report(_WireModel):
    id: str
    student_input: dict[str, Any]
    document: ReportDocument
    created_at: datetime
