"""
PDF and ZIP document builders shared by exports, portfolios and downloads.
"""

import html
import io
import zipfile
from datetime import datetime
from typing import Dict, List, Tuple, Union

from reportlab.lib import colors
from reportlab.lib.enums import TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.units import mm
from reportlab.platypus import SimpleDocTemplate, Paragraph, Spacer


# A section is a heading with its lines of text
Section = Tuple[str, List[str]]


def build_pdf(title: str, sections: List[Section], subtitle: str = "") -> bytes:
    """
    Render a simple A4 document.

    Args:
        title: Document title
        sections: (heading, lines) pairs
        subtitle: Optional line under the title

    Returns:
        bytes: PDF content
    """
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        leftMargin=25 * mm,
        rightMargin=25 * mm,
        topMargin=25 * mm,
        bottomMargin=25 * mm,
        title=title,
    )

    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(
        "MilestackTitle",
        parent=styles["Heading1"],
        fontName="Helvetica-Bold",
        fontSize=20,
        textColor=colors.HexColor("#2563eb"),
        spaceAfter=6,
        alignment=TA_LEFT,
    )
    subtitle_style = ParagraphStyle(
        "MilestackSubtitle",
        parent=styles["Normal"],
        fontSize=10,
        textColor=colors.grey,
        spaceAfter=16,
    )
    heading_style = ParagraphStyle(
        "MilestackHeading",
        parent=styles["Heading2"],
        fontName="Helvetica-Bold",
        fontSize=13,
        textColor=colors.HexColor("#1e40af"),
        spaceBefore=10,
        spaceAfter=6,
    )
    normal_style = styles["Normal"]

    story = [Paragraph(html.escape(title), title_style)]
    story.append(Paragraph(
        html.escape(subtitle or f"Generated on {datetime.utcnow().strftime('%Y-%m-%d %H:%M UTC')}"),
        subtitle_style
    ))

    for heading, lines in sections:
        story.append(Paragraph(html.escape(heading), heading_style))
        if not lines:
            story.append(Paragraph("None recorded.", normal_style))
        for line in lines:
            story.append(Paragraph(f"• {html.escape(str(line))}", normal_style))
        story.append(Spacer(1, 8))

    doc.build(story)
    return buffer.getvalue()


def build_zip(files: Dict[str, Union[str, bytes]]) -> io.BytesIO:
    """
    Pack named files into an in-memory ZIP archive.

    Returns:
        io.BytesIO: Archive positioned at the start
    """
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    buffer.seek(0)
    return buffer


def safe_filename(value: str, default: str = "file") -> str:
    cleaned = "".join(c for c in value if c.isalnum() or c in " -_").strip().replace(" ", "_")
    return cleaned or default
