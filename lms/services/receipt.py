"""Payment receipt PDF (ReportLab, A5)."""
import io
import logging
from datetime import datetime
from typing import Optional

from reportlab.lib import colors
from reportlab.lib.pagesizes import A5
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Table, TableStyle

from lms.config import settings
from lms.models.payment import Payment

logger = logging.getLogger(__name__)

# student_name, student_email, class_name, bundle (list of (class name, role))
ReceiptContext = Optional[dict]


def _number_to_words(n: float) -> str:
    """Whole rupees in words, e.g. 12500 -> 'Rupees Twelve Thousand Five Hundred Only'."""
    n = int(round(n))
    if n <= 0:
        return "Rupees Zero Only"
    ones = ["", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine", "Ten",
            "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen", "Seventeen",
            "Eighteen", "Nineteen"]
    tens = ["", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety"]

    def below_thousand(x: int) -> str:
        words = []
        if x >= 100:
            words.append(ones[x // 100] + " Hundred")
            x %= 100
        if x >= 20:
            words.append((tens[x // 10] + " " + ones[x % 10]).strip())
        elif x:
            words.append(ones[x])
        return " ".join(words)

    parts = []
    for value, label in ((1_000_000, "Million"), (1_000, "Thousand")):
        if n >= value:
            parts.append(below_thousand(n // value) + " " + label)
            n %= value
    if n:
        parts.append(below_thousand(n))
    return "Rupees " + " ".join(parts) + " Only"


def receipt_number(payment: Payment) -> str:
    return f"RCP-{str(payment.id)[-8:].upper()}"


def generate_receipt_pdf_bytes(payment: Payment, context: ReceiptContext = None) -> bytes:
    """Single page A5 receipt: header, student block, line table, amount in words."""
    context = context or {}
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A5)
    w, h = A5
    margin = 8 * mm
    y = h - margin
    border = colors.HexColor("#707070")
    c.setStrokeColor(border)

    c.setFont("Helvetica-Bold", 16)
    c.drawString(margin, y - 4 * mm, settings.brand_name[:50])
    c.setFont("Helvetica", 9)
    paid_at = payment.payment_date or datetime.utcnow()
    c.drawRightString(w - margin, y - 2 * mm, f"Receipt # {receipt_number(payment)}")
    c.drawRightString(w - margin, y - 7 * mm, f"Date {paid_at.strftime('%d/%m/%Y')}")
    if settings.business_address:
        c.drawString(margin, y - 10 * mm, settings.business_address.replace("\n", " ")[:90])
    y -= 16 * mm
    c.line(margin, y, w - margin, y)
    y -= 7 * mm

    c.setFont("Helvetica-Bold", 10)
    c.drawString(margin, y, "Student:")
    c.setFont("Helvetica", 10)
    c.drawString(margin + 22 * mm, y, str(context.get("student_name", ""))[:60])
    y -= 5 * mm
    if context.get("student_email"):
        c.drawString(margin + 22 * mm, y, str(context["student_email"])[:60])
        y -= 5 * mm
    c.setFont("Helvetica-Bold", 10)
    c.drawString(margin, y, "Billing month:")
    c.setFont("Helvetica", 10)
    c.drawString(margin + 28 * mm, y, payment.target_month or "-")
    y -= 10 * mm

    c.setFont("Helvetica-Bold", 14)
    title = "RECEIPT OF PAYMENT"
    c.drawString((w - c.stringWidth(title, "Helvetica-Bold", 14)) / 2, y, title)
    y -= 6 * mm

    rows = [["Description", "Amount"]]
    bundle = context.get("bundle") or []
    if bundle:
        for name, role in bundle:
            rows.append([f"{name} ({role})", ""])
        rows[1][1] = f"Rs.{payment.amount:,.2f}"
    else:
        rows.append([str(context.get("class_name", "Class fee")), f"Rs.{payment.amount:,.2f}"])
    rows.append(["Total", f"Rs.{payment.amount:,.2f}"])

    table_width = w - 2 * margin
    table = Table(rows, colWidths=[table_width * 0.7, table_width * 0.3])
    table.setStyle(
        TableStyle(
            [
                ("GRID", (0, 0), (-1, -1), 0.5, border),
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#e0e0e0")),
                ("ALIGN", (1, 1), (1, -1), "RIGHT"),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
            ]
        )
    )
    _, th = table.wrapOn(c, table_width, h)
    table.drawOn(c, margin, y - th)
    y -= th + 6 * mm

    c.setFont("Helvetica", 9)
    c.drawString(margin, y, _number_to_words(payment.amount)[:95])
    y -= 5 * mm
    method = payment.method.value.replace("_", " ").title()
    ref = payment.payhere_payment_id or payment.transaction_id or str(payment.id)
    c.drawString(margin, y, f"Method: {method}    Ref: {ref[:40]}")

    c.setFont("Helvetica", 8)
    c.drawCentredString(w / 2, margin, settings.receipt_footer[:100])
    c.save()
    return buf.getvalue()
