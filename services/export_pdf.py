"""Attempt transcripts rendered as PDF."""
from __future__ import annotations

import unicodedata
from io import BytesIO
from typing import Iterable

from fpdf import FPDF
from fpdf.enums import XPos, YPos

from formatters import iso


def _sanitize(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text or "")
    return normalized.encode("latin-1", "ignore").decode("latin-1")


class TranscriptPDF:
    def __init__(self, title: str) -> None:
        self._pdf = FPDF()
        self._pdf.set_auto_page_break(auto=True, margin=15)
        self._pdf.add_page()
        self._pdf.set_title(_sanitize(title))
        self._pdf.set_font("Helvetica", "B", 16)
        self._pdf.multi_cell(self._pdf.epw, 10, _sanitize(title), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self._pdf.ln(4)

    def heading(self, text: str) -> None:
        self._pdf.set_font("Helvetica", "B", 13)
        self._pdf.multi_cell(self._pdf.epw, 9, _sanitize(text), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self._pdf.ln(1)

    def paragraph(self, text: str, bold: bool = False) -> None:
        self._pdf.set_font("Helvetica", "B" if bold else "", 11)
        sanitized = _sanitize(text)
        if not sanitized.strip():
            sanitized = "(Content unavailable)"
        self._pdf.multi_cell(self._pdf.epw, 6, sanitized, new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        self._pdf.ln(2)

    def messages(self, messages: Iterable) -> None:
        for message in messages:
            speaker = "Student" if message.message_type == "student" else "Evaluator"
            timestamp = iso(message.created_at)
            self.paragraph(f"{speaker} - {timestamp}" if timestamp else speaker, bold=True)
            self.paragraph(message.message_text or "(No content)")

    def output(self) -> BytesIO:
        buffer = BytesIO(bytes(self._pdf.output()))
        buffer.seek(0)
        return buffer


def build_transcript_pdf(attempt) -> BytesIO:
    assessment = attempt.assessment
    pdf = TranscriptPDF(title=f"Transcript - {assessment.name}")

    pdf.heading("Attempt")
    lines = [
        f"Student: {attempt.student.full_name} ({attempt.student.email})",
        f"Status: {attempt.status}",
        f"Started: {iso(attempt.created_at) or '-'}",
        f"Completed: {iso(attempt.completed_at) or '-'}",
    ]
    if attempt.is_completed:
        lines.append(f"Final grade: {attempt.final_grade:.1f}")
    pdf.paragraph("\n".join(lines))

    pdf.heading("Case")
    pdf.paragraph(assessment.case_text or "No case text available.")

    pdf.heading("Conversation")
    if attempt.messages:
        pdf.messages(attempt.messages)
    else:
        pdf.paragraph("No messages yet.")

    if attempt.results:
        pdf.heading("Results")
        for result in attempt.results:
            level = result.skill_level.label if result.skill_level else "-"
            pdf.paragraph(f"{result.skill.name}: {level}", bold=True)
            pdf.paragraph(result.feedback or "No feedback.")

    return pdf.output()
