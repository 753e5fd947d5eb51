"""PDF rendering of a financial report."""
import io
from datetime import datetime
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..models.models import utcnow

TYPE_LABELS = {"yearly": "Yearly", "quarterly": "Quarterly", "summary": "Summary"}

_BRAND = colors.HexColor("#2980b9")


def _money(value) -> str:
    return f"{float(value or 0):,.2f}"


def _table(rows, col_widths, header: bool = False) -> Table:
    t = Table(rows, colWidths=col_widths, hAlign="LEFT")
    style = [
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.HexColor("#eeeeee")),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
    ]
    if header:
        style += [
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("TEXTCOLOR", (0, 0), (-1, 0), _BRAND),
            ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
        ]
    t.setStyle(TableStyle(style))
    return t


def render_report_pdf(
    title: str,
    kind: str,
    period: str,
    data: dict,
    company_name: str,
    author_name: Optional[str],
    created_at: Optional[datetime] = None,
) -> bytes:
    """Build a one-page PDF summary of a report and return its bytes."""
    created_at = created_at or utcnow()
    styles = getSampleStyleSheet()
    h1 = ParagraphStyle("ReportTitle", parent=styles["Title"], textColor=colors.HexColor("#2c3e50"))
    h2 = ParagraphStyle("ReportSection", parent=styles["Heading2"], textColor=_BRAND)
    footer = ParagraphStyle("ReportFooter", parent=styles["Normal"], fontSize=8, textColor=colors.HexColor("#7f8c8d"))

    story = [Paragraph("Financial report", h1), Spacer(1, 4 * mm)]
    info = [
        ["Title", title],
        ["Type", TYPE_LABELS.get(kind, kind)],
        ["Period", period or "Not specified"],
        ["Company", company_name],
        ["Author", author_name or "Unknown"],
        ["Created", created_at.strftime("%Y-%m-%d")],
    ]
    story.append(_table(info, [40 * mm, 120 * mm]))

    story += [Spacer(1, 6 * mm), Paragraph("Figures", h2)]
    figures = [
        ["Income", _money(data.get("income"))],
        ["Expenses", _money(data.get("expenses"))],
        ["Profit", _money(data.get("profit"))],
    ]
    story.append(_table(figures, [40 * mm, 40 * mm]))

    by_currency = data.get("byCurrency") or {}
    if by_currency:
        story += [Spacer(1, 6 * mm), Paragraph("By currency", h2)]
        rows = [["Currency", "Income", "Expenses", "Profit"]]
        for cur, fig in by_currency.items():
            rows.append([cur, _money(fig.get("income")), _money(fig.get("expenses")), _money(fig.get("profit"))])
        story.append(_table(rows, [30 * mm, 40 * mm, 40 * mm, 40 * mm], header=True))

    if kind == "yearly" and data.get("monthsCovered"):
        story += [
            Spacer(1, 6 * mm),
            Paragraph(f"Covers {data['monthsCovered']} of 12 months of {data.get('year', '')}", styles["Normal"]),
        ]
    elif kind == "quarterly" and data.get("quarter"):
        story += [Spacer(1, 6 * mm), Paragraph(f"Q{data['quarter']} {data.get('year', '')}", styles["Normal"])]

    story += [Spacer(1, 12 * mm), Paragraph(f"Generated {utcnow().strftime('%Y-%m-%d %H:%M')} UTC", footer)]

    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        title=title,
        leftMargin=20 * mm,
        rightMargin=20 * mm,
        topMargin=20 * mm,
        bottomMargin=20 * mm,
    )
    doc.build(story)
    return buf.getvalue()
