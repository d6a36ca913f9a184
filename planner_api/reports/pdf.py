"""PDF rendering for paid reports (reportlab platypus)."""

import io
from xml.sax.saxutils import escape

from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import ListFlowable, ListItem, Paragraph, SimpleDocTemplate, Spacer

from planner_api.reports.models import Report


def _styles() -> dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    return {
        "title": ParagraphStyle("PlanTitle", parent=base["Title"], fontSize=22, spaceAfter=12),
        "heading": ParagraphStyle("PlanHeading", parent=base["Heading2"], spaceBefore=10, spaceAfter=6),
        "period": ParagraphStyle("PlanPeriod", parent=base["Heading4"], spaceBefore=6, spaceAfter=2),
        "body": base["BodyText"],
        "footer": ParagraphStyle("PlanFooter", parent=base["BodyText"], fontSize=8, alignment=1),
    }


def render_report_pdf(report: Report) -> bytes:
    """Render the full report document as PDF bytes."""
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=18 * mm,
        rightMargin=18 * mm,
        topMargin=18 * mm,
        bottomMargin=18 * mm,
        title="College Application Plan",
    )
    styles = _styles()
    student = report.student_input
    document = report.document

    elements = [Paragraph("College Application Plan", styles["title"])]

    elements.append(Paragraph("Student Profile", styles["heading"]))
    for label, key in (("Name", "studentName"), ("Grade", "currentGrade"), ("High School", "highSchool")):
        value = student.get(key) or "Not specified"
        elements.append(Paragraph(f"<b>{label}:</b> {escape(str(value))}", styles["body"]))

    elements.append(Paragraph("Overview", styles["heading"]))
    elements.append(Paragraph(escape(document.overview), styles["body"]))

    elements.append(Paragraph("Application Timeline", styles["heading"]))
    for period in document.timeline:
        elements.append(Paragraph(escape(period.period), styles["period"]))
        items = []
        for event in period.events:
            text = f"<b>{escape(event.title)}</b>"
            if event.description:
                text += f": {escape(event.description)}"
            if event.deadline:
                text += f" (deadline {escape(event.deadline)})"
            items.append(ListItem(Paragraph(text, styles["body"])))
        if items:
            elements.append(ListFlowable(items, bulletType="bullet"))

    elements.append(Paragraph("Next Steps", styles["heading"]))
    steps = [
        ListItem(Paragraph(f"<b>{escape(step.title)}</b>: {escape(step.description)}", styles["body"]))
        for step in sorted(document.next_steps, key=lambda s: s.priority)
    ]
    if steps:
        elements.append(ListFlowable(steps, bulletType="1"))

    elements.append(Spacer(1, 12 * mm))
    elements.append(Paragraph(f"Report ID: {escape(report.id)}", styles["footer"]))
    elements.append(
        Paragraph(f"Generated on: {report.created_at.date().isoformat()}", styles["footer"])
    )

    doc.build(elements)
    return buffer.getvalue()
