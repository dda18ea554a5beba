"""
Study pack PDF rendering with reportlab.
"""
import asyncio
import html
import io
import re
from datetime import datetime
from typing import List

import structlog
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import PageBreak, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from schemas.content import PDFExportRequest

logger = structlog.get_logger("pdf_generation")

TEMPLATE_COLORS = {
    "academic": colors.Color(25 / 255, 25 / 255, 112 / 255),
    "modern": colors.Color(124 / 255, 58 / 255, 237 / 255),
    "minimal": colors.Color(75 / 255, 85 / 255, 99 / 255),
    "creative": colors.Color(16 / 255, 185 / 255, 129 / 255),
}


class PDFGenerationError(Exception):
    pass


def inline_markup(text) -> str:
    """Escape text for a Paragraph and turn **bold** / *italic* into tags."""
    safe_text = html.escape(str(text or ""))
    safe_text = re.sub(r"\*\*(.+?)\*\*", r"<b>\1</b>", safe_text)
    safe_text = re.sub(r"\*(.+?)\*", r"<i>\1</i>", safe_text)
    return safe_text.replace("\n", "<br/>")


def _format_date(value: str) -> str:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).strftime("%Y-%m-%d")
    except (AttributeError, ValueError):
        return str(value or "")


class PDFRenderer:
    """Builds the downloadable study pack document from stored learning content."""

    def _styles(self, template: str) -> dict:
        accent = TEMPLATE_COLORS.get(template, TEMPLATE_COLORS["academic"])
        base = getSampleStyleSheet()
        return {
            "title": ParagraphStyle(
                "PackTitle", parent=base["Title"], fontSize=26, leading=32, textColor=accent, spaceAfter=8
            ),
            "subtitle": ParagraphStyle(
                "PackSubtitle", parent=base["Heading2"], alignment=1, textColor=accent
            ),
            "centered": ParagraphStyle("PackCentered", parent=base["BodyText"], alignment=1, fontSize=11, leading=16),
            "section": ParagraphStyle(
                "PackSection", parent=base["Heading1"], fontSize=20, leading=24, textColor=accent, spaceAfter=10
            ),
            "heading": ParagraphStyle(
                "PackHeading", parent=base["Heading3"], fontSize=14, leading=18, textColor=accent
            ),
            "body": ParagraphStyle("PackBody", parent=base["BodyText"], fontSize=11, leading=15),
            "question": ParagraphStyle(
                "PackQuestion", parent=base["BodyText"], fontName="Helvetica-Bold", fontSize=11, leading=15
            ),
        }

    def _title_page(self, content: dict, options: PDFExportRequest, styles: dict) -> List:
        metadata = content["studyPacks"]["metadata"]
        story = [
            Spacer(1, 30 * mm),
            Paragraph(inline_markup(content["audioTitle"]), styles["title"]),
            Paragraph(inline_markup(metadata["subtitle"]), styles["subtitle"]),
            Spacer(1, 14 * mm),
        ]
        details = [
            f"Duration: {content['duration']}",
            f"Generated: {_format_date(content['processedAt'])}",
            f"Level: {metadata['level']}",
            f"Author: {metadata['author']}",
            "Source: Audio Transcription",
            f"Tags: {', '.join(metadata['tags'])}",
        ]
        story.extend(Paragraph(inline_markup(line), styles["centered"]) for line in details)
        story.append(Spacer(1, 14 * mm))
        story.append(Paragraph("<b>Study Pack Contents</b>", styles["centered"]))

        contents = []
        if options.includeSummary:
            contents.append(f"Summary Notes ({options.summaryTone} tone)")
        if options.includeFlashcards:
            contents.append(f"{len(content['flashcards'])} Flashcards")
        if options.includeConcepts:
            contents.append(f"{len(content['concepts'])} Key Concepts")
        story.extend(Paragraph(inline_markup(line), styles["centered"]) for line in contents)
        return story

    def _table_of_contents(self, options: PDFExportRequest, styles: dict) -> List:
        entries = []
        if options.includeSummary:
            entries.append(f"Summary Notes ({options.summaryTone})")
        if options.includeFlashcards:
            entries.append("Flashcards")
        if options.includeConcepts:
            entries.append("Key Concepts")
        if options.includeMetadata:
            entries.append("Study Metadata")

        story = [Paragraph("Table of Contents", styles["section"])]
        # Each section starts on its own page after the title page and this one
        for page, entry in enumerate(entries, start=3):
            dots = "." * max(1, 60 - len(entry))
            story.append(Paragraph(f"{inline_markup(entry)} {dots} {page}", styles["body"]))
        return story

    def _summary(self, summary: dict, styles: dict) -> List:
        story = [
            Paragraph("Summary Notes", styles["section"]),
            Paragraph(inline_markup(summary["title"]), styles["heading"]),
            Spacer(1, 4),
        ]
        for section in summary["sections"]:
            story.append(Paragraph(inline_markup(section["heading"]), styles["heading"]))
            story.append(Paragraph(inline_markup(section["content"]), styles["body"]))
            story.append(Spacer(1, 8))
        return story

    def _flashcards(self, flashcards: list, styles: dict) -> List:
        story = [Paragraph("Flashcards", styles["section"])]
        if not flashcards:
            story.append(Paragraph("No flashcards available.", styles["body"]))
            return story
        for index, card in enumerate(flashcards, start=1):
            story.append(Paragraph(f"Q{index}. {inline_markup(card['question'])}", styles["question"]))
            story.append(Paragraph(f"A: {inline_markup(card['answer'])}", styles["body"]))
            story.append(Spacer(1, 8))
        return story

    def _concepts(self, concepts: list, styles: dict) -> List:
        story = [Paragraph("Key Concepts", styles["section"])]
        if not concepts:
            story.append(Paragraph("No concepts available.", styles["body"]))
            return story
        rows = [[Paragraph(f"<b>{label}</b>", styles["body"]) for label in ("Term", "Definition", "Category")]]
        for concept in concepts:
            rows.append([
                Paragraph(inline_markup(concept["term"]), styles["body"]),
                Paragraph(inline_markup(concept["definition"]), styles["body"]),
                Paragraph(inline_markup(concept["category"]), styles["body"]),
            ])
        table = Table(rows, colWidths=[42 * mm, 100 * mm, 36 * mm], repeatRows=1, hAlign="LEFT")
        table.setStyle(TableStyle([
            ("GRID", (0, 0), (-1, -1), 0.35, colors.HexColor("#D1D5DB")),
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#F3F4F6")),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]))
        story.append(table)
        return story

    def _metadata(self, content: dict, styles: dict) -> List:
        metadata = content["studyPacks"]["metadata"]
        stats = content["studyPacks"]["stats"]
        rows = [
            ("Title", metadata["title"]),
            ("Duration", metadata["duration"]),
            ("Level", metadata["level"]),
            ("Tags", ", ".join(metadata["tags"])),
            ("Word Count", stats["wordCount"]),
            ("Reading Time", stats["readingTime"]),
            ("Estimated Pages", stats["totalPages"]),
            ("Concepts", stats["concepts"]),
            ("Flashcards", stats["flashcards"]),
            ("Generated", _format_date(metadata["generatedAt"])),
        ]
        table = Table(
            [[Paragraph(f"<b>{label}</b>", styles["body"]), Paragraph(inline_markup(value), styles["body"])]
             for label, value in rows],
            colWidths=[45 * mm, 133 * mm],
            hAlign="LEFT",
        )
        table.setStyle(TableStyle([
            ("GRID", (0, 0), (-1, -1), 0.35, colors.HexColor("#E5E7EB")),
            ("BACKGROUND", (0, 0), (0, -1), colors.HexColor("#F9FAFB")),
        ]))
        return [Paragraph("Study Metadata", styles["section"]), table]

    def render_sync(self, content: dict, options: PDFExportRequest) -> bytes:
        """Render the study pack and return the PDF bytes."""
        buffer = io.BytesIO()
        title = str(content.get("audioTitle") or "Study Pack")
        doc = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            leftMargin=16 * mm,
            rightMargin=16 * mm,
            topMargin=16 * mm,
            bottomMargin=18 * mm,
            title=title,
        )
        styles = self._styles(options.template)

        def _footer(canvas, document):
            canvas.saveState()
            canvas.setFont("Helvetica", 8)
            canvas.setFillColor(colors.HexColor("#6B7280"))
            canvas.drawString(16 * mm, 10 * mm, title[:80])
            canvas.drawRightString(A4[0] - 16 * mm, 10 * mm, f"Page {document.page}")
            canvas.restoreState()

        try:
            story = self._title_page(content, options, styles)
            story += [PageBreak()] + self._table_of_contents(options, styles)
            if options.includeSummary:
                story += [PageBreak()] + self._summary(content["summary"][options.summaryTone], styles)
            if options.includeFlashcards:
                story += [PageBreak()] + self._flashcards(content.get("flashcards") or [], styles)
            if options.includeConcepts:
                story += [PageBreak()] + self._concepts(content.get("concepts") or [], styles)
            if options.includeMetadata:
                story += [PageBreak()] + self._metadata(content, styles)
            doc.build(story, onFirstPage=_footer, onLaterPages=_footer)
        except (KeyError, TypeError, ValueError) as e:
            logger.error("PDF generation failed", error=str(e), template=options.template)
            raise PDFGenerationError(f"PDF generation failed: {e}") from e

        return buffer.getvalue()

    async def render(self, content: dict, options: PDFExportRequest) -> bytes:
        # reportlab is synchronous and CPU bound
        return await asyncio.to_thread(self.render_sync, content, options)
