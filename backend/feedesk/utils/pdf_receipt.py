# ============================================================
# feedesk/utils/pdf_receipt.py
#
# Renders a Receipt as a PDF.
# Called by: POST /api/v1/fee-ledger/receipts/pdf
#
# Library: ReportLab
# Output:  BytesIO buffer, streamed to the client and never
#          written to disk.
#
# Layout:
#   - A5 (148 x 210mm). Counters print two per A4 sheet and cut.
#   - No logo; the branch name renders large in the header.
#   - One row per fee line: head / term, original, concession,
#     paid. Concession names are listed under the head.
#   - Amounts in Indian grouping: ₹1,23,456.00
# ============================================================

from io import BytesIO
from datetime import datetime

from reportlab.lib.pagesizes import A5
from reportlab.lib.units import mm
from reportlab.lib import colors
from reportlab.lib.styles import ParagraphStyle
from reportlab.platypus import (
    SimpleDocTemplate, Paragraph, Spacer, Table, TableStyle, HRFlowable
)
from reportlab.lib.enums import TA_CENTER, TA_RIGHT

from feedesk.core.config import settings
from feedesk.schemas.receipts import Receipt
from feedesk.utils.money import format_inr


# ── Colour palette ────────────────────────────────────────────
# Must stay legible in greyscale.
HEADER_BLUE   = colors.HexColor("#1E3A8A")
DARK_TEXT     = colors.HexColor("#1A1A1A")
MUTED_TEXT    = colors.HexColor("#6B7280")
LIGHT_BG      = colors.HexColor("#F3F4F6")
BORDER_COLOR  = colors.HexColor("#D1D5DB")
TOTAL_BG      = colors.HexColor("#DBEAFE")
CONCESSION    = colors.HexColor("#047857")
WHITE         = colors.white


def _format_date(value) -> str:
    if isinstance(value, datetime):
        return value.strftime("%-d %B %Y, %I:%M %p")
    if hasattr(value, "strftime"):
        return value.strftime("%-d %B %Y")
    return str(value)


def generate_receipt_pdf(receipt: Receipt) -> BytesIO:
    """
    Returns a BytesIO buffer containing the PDF receipt.

    Example:
        buf = generate_receipt_pdf(receipt)
        return StreamingResponse(buf, media_type="application/pdf",
            headers={"Content-Disposition": f"attachment; filename={receipt.receipt_number}.pdf"})
    """
    buffer = BytesIO()

    doc = SimpleDocTemplate(
        buffer,
        pagesize=A5,
        rightMargin=12 * mm,
        leftMargin=12 * mm,
        topMargin=10 * mm,
        bottomMargin=10 * mm,
        title=f"Receipt {receipt.receipt_number}",
        author=receipt.branch_name or settings.APP_NAME,
    )

    def style(name, **kwargs):
        defaults = dict(fontName="Helvetica", fontSize=9, leading=12,
                        textColor=DARK_TEXT)
        defaults.update(kwargs)
        return ParagraphStyle(name, **defaults)

    S = {
        "branch_name": style("bn", fontName="Helvetica-Bold", fontSize=15,
                             leading=19, textColor=WHITE, alignment=TA_CENTER),
        "branch_sub":  style("bs", fontSize=8, textColor=WHITE, alignment=TA_CENTER,
                             leading=11),
        "receipt_label": style("rl", fontName="Helvetica-Bold", fontSize=11,
                               textColor=WHITE, alignment=TA_CENTER),
        "receipt_num": style("rn", fontSize=9, textColor=WHITE,
                             alignment=TA_CENTER),
        "section_head": style("sh", fontName="Helvetica-Bold", fontSize=8,
                              textColor=MUTED_TEXT, spaceAfter=2),
        "field_label": style("fl", fontSize=8, textColor=MUTED_TEXT),
        "field_value": style("fv", fontName="Helvetica-Bold", fontSize=9),
        "table_head":  style("th", fontName="Helvetica-Bold", fontSize=7.5,
                             textColor=WHITE),
        "table_head_r": style("thr", fontName="Helvetica-Bold", fontSize=7.5,
                              textColor=WHITE, alignment=TA_RIGHT),
        "table_cell":  style("tc", fontSize=8),
        "table_note":  style("tn", fontSize=6.5, leading=8, textColor=CONCESSION),
        "table_right": style("tr", fontSize=8, alignment=TA_RIGHT),
        "total_label": style("tl", fontName="Helvetica-Bold", fontSize=9),
        "total_value": style("tv", fontName="Helvetica-Bold", fontSize=9,
                             alignment=TA_RIGHT),
        "words":       style("wd", fontName="Helvetica-Oblique", fontSize=8),
        "footer":      style("ft", fontSize=7, textColor=MUTED_TEXT,
                             alignment=TA_CENTER),
    }

    story = []
    page_w = A5[0] - 24 * mm

    # ── HEADER BANNER ─────────────────────────────────────────
    header_data = [[Paragraph((receipt.branch_name or settings.APP_NAME).upper(), S["branch_name"])]]
    if receipt.branch_address:
        header_data.append([Paragraph(receipt.branch_address, S["branch_sub"])])
    header_data.append([Paragraph("FEE RECEIPT", S["receipt_label"])])
    header_data.append([Paragraph(receipt.receipt_number, S["receipt_num"])])

    header_table = Table(header_data, colWidths=[page_w])
    header_table.setStyle(TableStyle([
        ("BACKGROUND",  (0, 0), (-1, -1), HEADER_BLUE),
        ("TOPPADDING",  (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
        ("LEFTPADDING",  (0, 0), (-1, -1), 8),
        ("RIGHTPADDING", (0, 0), (-1, -1), 8),
    ]))
    story.append(header_table)
    story.append(Spacer(1, 5 * mm))

    # ── STUDENT DETAILS ───────────────────────────────────────
    def field_row(label, value):
        return [
            Paragraph(label, S["field_label"]),
            Paragraph(str(value) if value else "-", S["field_value"]),
        ]

    detail_data = [
        field_row("Student Name",  receipt.student_name),
        field_row("Admission No.", receipt.admission_number),
        field_row("Class",         receipt.class_name),
        field_row("Session",       receipt.session_name),
        field_row("Payment Date",  _format_date(receipt.payment_date)),
        field_row("Payment Mode",  receipt.payment_mode),
    ]
    if receipt.transaction_reference:
        detail_data.append(field_row("Reference", receipt.transaction_reference))

    detail_table = Table(detail_data, colWidths=[page_w * 0.3, page_w * 0.7])
    detail_table.setStyle(TableStyle([
        ("TOPPADDING",    (0, 0), (-1, -1), 2),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
        ("LEFTPADDING",   (0, 0), (-1, -1), 0),
        ("RIGHTPADDING",  (0, 0), (-1, -1), 0),
        ("LINEBELOW",     (0, -1), (-1, -1), 0.5, BORDER_COLOR),
    ]))
    story.append(detail_table)
    story.append(Spacer(1, 4 * mm))

    # ── FEE LINES ─────────────────────────────────────────────
    story.append(Paragraph("FEE DETAILS", S["section_head"]))

    fee_rows = [[
        Paragraph("Fee", S["table_head"]),
        Paragraph("Amount", S["table_head_r"]),
        Paragraph("Concession", S["table_head_r"]),
        Paragraph("Paid", S["table_head_r"]),
    ]]
    for line in receipt.lines:
        label = [Paragraph(f"{line.fee_head_name} ({line.fee_term_name})", S["table_cell"])]
        if line.applied_concessions:
            names = ", ".join(c.name for c in line.applied_concessions)
            label.append(Paragraph(names, S["table_note"]))
        fee_rows.append([
            label,
            Paragraph(format_inr(line.original_amount), S["table_right"]),
            Paragraph(format_inr(line.concession_amount), S["table_right"]),
            Paragraph(format_inr(line.final_amount), S["table_right"]),
        ])

    totals = receipt.totals
    fee_rows.append([
        Paragraph("TOTAL", S["total_label"]),
        Paragraph(format_inr(totals.total_original_amount), S["total_value"]),
        Paragraph(format_inr(totals.total_concession_amount), S["total_value"]),
        Paragraph(format_inr(totals.total_paid_amount), S["total_value"]),
    ])

    n_items = len(receipt.lines)
    n_rows = len(fee_rows)
    fee_table = Table(
        fee_rows,
        colWidths=[page_w * 0.40, page_w * 0.20, page_w * 0.20, page_w * 0.20],
    )
    fee_table.setStyle(TableStyle([
        ("BACKGROUND",    (0, 0), (-1, 0), HEADER_BLUE),
        ("TOPPADDING",    (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
        ("LEFTPADDING",   (0, 0), (-1, -1), 3),
        ("RIGHTPADDING",  (0, 0), (-1, -1), 3),
        ("VALIGN",        (0, 0), (-1, -1), "TOP"),
        *[
            ("BACKGROUND", (0, i + 1), (-1, i + 1), LIGHT_BG)
            for i in range(n_items) if i % 2 == 0
        ],
        ("LINEBELOW",     (0, 0), (-1, n_items), 0.3, BORDER_COLOR),
        ("BACKGROUND",    (0, n_rows - 1), (-1, n_rows - 1), TOTAL_BG),
        ("LINEABOVE",     (0, n_rows - 1), (-1, n_rows - 1), 1, HEADER_BLUE),
    ]))
    story.append(fee_table)
    story.append(Spacer(1, 3 * mm))

    story.append(Paragraph(f"Amount in words: {receipt.amount_in_words}", S["words"]))
    story.append(Spacer(1, 3 * mm))

    if receipt.notes:
        story.append(Paragraph(f"Note: {receipt.notes}", S["footer"]))
        story.append(Spacer(1, 2 * mm))

    # ── FOOTER ────────────────────────────────────────────────
    story.append(HRFlowable(width=page_w, color=BORDER_COLOR, thickness=0.5))
    story.append(Spacer(1, 2 * mm))
    story.append(Paragraph(
        f"Generated {_format_date(datetime.now())}  •  "
        f"This is a computer-generated receipt and requires no signature.",
        S["footer"]
    ))

    doc.build(story)
    buffer.seek(0)
    return buffer
