"""Unit test fixtures: generated documents, no database."""

from __future__ import annotations

import io

import pytest


@pytest.fixture
def sample_docx_bytes() -> bytes:
    """DOCX with a heading paragraph and a two-row items table."""
    docx = pytest.importorskip("docx")
    doc = docx.Document()
    doc.add_paragraph("FACTURE N° FA-2024-001")
    doc.add_paragraph("ACME SARL, 12 rue des Lilas, Paris")
    table = doc.add_table(rows=2, cols=3)
    for r, row in enumerate([("Description", "Qté", "Total"), ("Papier A4", "2", "10,00")]):
        for c, value in enumerate(row):
            table.cell(r, c).text = value
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


@pytest.fixture
def empty_docx_bytes() -> bytes:
    """Generate a valid DOCX with no paragraphs containing text."""
    docx = pytest.importorskip("docx")
    doc = docx.Document()
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


@pytest.fixture
def invoice_pdf_bytes() -> bytes:
    """1-page PDF with a native text layer well above the OCR threshold."""
    fpdf = pytest.importorskip("fpdf")
    pdf = fpdf.FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", size=12)
    for line in (
        "ACME FOURNITURES",
        "FACTURE No FA-2024-001",
        "Date: 15/03/2024",
        "Papier A4 x2    10.00 EUR",
        "Total TTC       10.00 EUR",
    ):
        pdf.cell(text=line)
        pdf.ln()
    return bytes(pdf.output())


@pytest.fixture
def empty_pdf_bytes() -> bytes:
    """Generate a 2-page PDF with no text content (a scan without text layer)."""
    fpdf = pytest.importorskip("fpdf")
    pdf = fpdf.FPDF()
    pdf.add_page()
    pdf.add_page()
    return bytes(pdf.output())


@pytest.fixture
def png_bytes() -> bytes:
    """Small non-square white PNG."""
    image_mod = pytest.importorskip("PIL.Image")
    img = image_mod.new("RGB", (120, 60), "white")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def two_page_invoice_pdf_bytes() -> bytes:
    """2-page native PDF: header and first item on page 1, second item on page 2."""
    fpdf = pytest.importorskip("fpdf")
    pdf = fpdf.FPDF()
    pdf.set_font("Helvetica", size=12)
    for lines in (
        ("ACME FOURNITURES", "FACTURE No FA-2024-001", "Papier A4 x2    10.00 EUR"),
        ("Suite de la facture FA-2024-001", "Cartouches encre    20.00 EUR"),
    ):
        pdf.add_page()
        for line in lines:
            pdf.cell(text=line)
            pdf.ln()
    return bytes(pdf.output())
