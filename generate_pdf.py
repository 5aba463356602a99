"""Render the signed priority access agreement as a single-page PDF."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from io import BytesIO
from typing import Optional

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import letter
from reportlab.lib.units import inch
from reportlab.pdfgen import canvas

from agreement_service import AgreementRenderRecord
from errors import RenderError

logger = logging.getLogger(__name__)

PDF_MAGIC = b"%PDF"

PAGE_WIDTH, PAGE_HEIGHT = letter
MARGIN = 1 * inch
# Terms stop once the cursor reaches this height; the rest is the signature block.
SIGNATURE_RESERVE = MARGIN + 150
SIGNATURE_TOP = MARGIN + 120
HASH_PREVIEW_CHARS = 32

REGULAR_FONT = "Times-Roman"
BOLD_FONT = "Times-Bold"
BLACK = HexColor("#000000")
GRAY = HexColor("#808080")

TERMS_LINES = [
    "By electronically signing this agreement, the client acknowledges and agrees to:",
    "",
    "1. Grant priority access to their systems and resources as outlined in the",
    "   service agreement.",
    "",
    "2. Comply with all security requirements and protocols established for",
    "   priority access privileges.",
    "",
    "3. Accept responsibility for all activities conducted under this priority",
    "   access arrangement.",
    "",
    "4. Notify the service provider immediately of any security concerns or",
    "   unauthorized access attempts.",
]


def _s(v) -> str:
    return "" if v is None else str(v)


def format_signed_at(value: Optional[datetime]) -> str:
    """e.g. 'January 1, 2025 at 10:00 AM UTC'. Naive datetimes are taken as UTC."""
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    hour = value.strftime("%I").lstrip("0") or "12"
    return f"{value.strftime('%B')} {value.day}, {value.year} at {hour}:{value.strftime('%M %p')} {value.tzname() or 'UTC'}"


def hash_preview(signature_hash: Optional[str]) -> str:
    return f"{_s(signature_hash)[:HASH_PREVIEW_CHARS]}..."


class _Cursor:
    """Top-down text cursor over a single canvas page."""

    def __init__(self, c: canvas.Canvas):
        self.c = c
        self.y = PAGE_HEIGHT - MARGIN

    def line(self, text: str, size: float, font: str = REGULAR_FONT, color=BLACK, advance: float = 20):
        self.c.setFont(font, size)
        self.c.setFillColor(color)
        self.c.drawString(MARGIN, self.y, text)
        self.y -= advance

    def skip(self, amount: float):
        self.y -= amount


def _draw_header(cur: _Cursor, record: AgreementRenderRecord):
    cur.line("PRIORITY ACCESS AGREEMENT", 20, BOLD_FONT, advance=40)

    client = record.client
    cur.line(f"Company: {_s(client.company_name)}", 12, BOLD_FONT)
    cur.line(f"Contact: {_s(client.contact_name)}", 12)
    cur.line(f"Title: {_s(client.role_title)}", 12)
    cur.line(f"Email: {_s(client.email)}", 12, advance=40)


def _draw_details(cur: _Cursor, record: AgreementRenderRecord):
    cur.line("AGREEMENT DETAILS", 14, BOLD_FONT, advance=25)
    cur.line(f"Terms Version: {_s(record.terms_version)}", 12)
    cur.line(f"Agreement ID: {_s(record.id)}", 12, color=GRAY, advance=40)


def _draw_terms(cur: _Cursor, lines=TERMS_LINES):
    cur.line("TERMS AND CONDITIONS", 14, BOLD_FONT, advance=25)
    for text in lines:
        if cur.y < SIGNATURE_RESERVE:
            # No continuation page: remaining terms are dropped.
            break
        cur.line(text, 11, advance=15)


def _draw_signature(cur: _Cursor, record: AgreementRenderRecord):
    cur.y = SIGNATURE_TOP
    cur.line("ELECTRONIC SIGNATURE", 14, BOLD_FONT, advance=25)
    cur.line(f"Signed by: {_s(record.signer_name)}", 12)
    cur.line(f"Date: {format_signed_at(record.signed_at)}", 12)
    cur.line(f"IP Address: {_s(record.signer_ip)}", 12, color=GRAY)
    cur.line(f"Signature Hash: {hash_preview(record.signature_hash)}", 10, color=GRAY)


def generate_agreement_pdf(record: AgreementRenderRecord, terms_lines=TERMS_LINES) -> bytes:
    """
    Render the agreement certificate.

    Layout is fixed: US Letter, 1 inch margins, sections in order (title,
    client block, agreement details, terms, signature). Rendered fresh on
    every call. Any failure is raised as RenderError; no partial buffer is
    ever returned.
    """
    buf = BytesIO()
    try:
        c = canvas.Canvas(buf, pagesize=letter)
        c.setTitle("Priority Access Agreement")
        c.setSubject(f"Agreement {_s(record.id)}")
        cur = _Cursor(c)
        _draw_header(cur, record)
        _draw_details(cur, record)
        _draw_terms(cur, terms_lines)
        _draw_signature(cur, record)
        c.showPage()
        c.save()
    except Exception as e:
        logger.error(f"Error generating PDF for agreement {record.id}: {e}")
        raise RenderError(f"PDF generation failed: {e}") from e

    pdf_bytes = buf.getvalue()
    if not pdf_bytes.startswith(PDF_MAGIC):
        raise RenderError("PDF generation produced an invalid document")
    return pdf_bytes
