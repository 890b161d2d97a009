"""
Printable tax invoice.

build_invoice_document() turns a Transaction into a plain dict (used by
the JSON endpoint and by the PDF renderer). Prices are VAT-inclusive;
each line's taxable amount and VAT are extracted with split_vat, and the
invoice totals are split from the grand total, not summed from lines.
"""
from __future__ import annotations

import io
from xml.sax.saxutils import escape

from flask import current_app
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from ..money import cents_to_decimal, split_vat
from .transactions import Transaction

_ONES = (
    "", "One", "Two", "Three", "Four", "Five", "Six", "Seven", "Eight", "Nine",
    "Ten", "Eleven", "Twelve", "Thirteen", "Fourteen", "Fifteen", "Sixteen",
    "Seventeen", "Eighteen", "Nineteen",
)
_TENS = ("", "", "Twenty", "Thirty", "Forty", "Fifty", "Sixty", "Seventy", "Eighty", "Ninety")
_SCALES = ((1_000_000_000, "Billion"), (1_000_000, "Million"), (1_000, "Thousand"))


def _below_thousand(n: int) -> list[str]:
    words = []
    if n >= 100:
        words += [_ONES[n // 100], "Hundred"]
        n %= 100
    if n >= 20:
        words.append(_TENS[n // 10])
        n %= 10
    if n:
        words.append(_ONES[n])
    return words


def number_to_words(n: int) -> str:
    if n < 0:
        return "Minus " + number_to_words(-n)
    if n == 0:
        return "Zero"
    words = []
    for scale, label in _SCALES:
        if n >= scale:
            words += _below_thousand(n // scale) + [label]
            n %= scale
    words += _below_thousand(n)
    return " ".join(words)


def amount_in_words(cents: int, currency_word: str = "Dirhams", subunit_word: str = "Fils") -> str:
    """1234_50 -> 'ONE THOUSAND TWO HUNDRED THIRTY FOUR DIRHAMS AND FIFTY FILS ONLY'"""
    whole, fraction = divmod(abs(cents), 100)
    text = f"{number_to_words(whole)} {currency_word}"
    if fraction:
        text += f" and {number_to_words(fraction)} {subunit_word}"
    if cents < 0:
        text = "Minus " + text
    return f"{text} Only".upper()


def _money(cents: int) -> str:
    return f"{cents_to_decimal(cents):,.2f}"


def build_invoice_document(txn: Transaction) -> dict:
    cfg = current_app.config
    rate_bps = cfg["VAT_RATE_BPS"]

    lines = []
    for item in sorted(txn.items, key=lambda i: i.id or 0):
        line_total = item.unit_price_cents * item.quantity
        taxable, vat = split_vat(line_total, rate_bps)
        lines.append({
            "upc": item.upc,
            "description": item.product_name,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "taxable_cents": taxable,
            "vat_cents": vat,
            "total_cents": line_total,
        })

    subtotal, vat = split_vat(txn.total_amount_cents, rate_bps)
    show_trn = txn.invoice_type == "corporate" and txn.customer_trn

    return {
        "store": {
            "name": cfg["STORE_NAME"],
            "address": cfg.get("STORE_ADDRESS") or "",
            "trn": cfg.get("STORE_TRN") or "",
        },
        "invoice_number": txn.invoice_number,
        "transaction_id": txn.transaction_id,
        "date": txn.created_at.strftime("%d/%m/%Y"),
        "time": txn.created_at.strftime("%H:%M:%S"),
        "seller_name": txn.seller_name,
        "payment_method": txn.payment_method,
        "payment_reference": txn.payment_reference,
        "invoice_type": txn.invoice_type,
        "customer": {
            "name": txn.customer_name or "Walk-in Customer",
            "mobile": txn.customer_mobile,
            "address": txn.customer_address,
            "trn": txn.customer_trn if show_trn else None,
        },
        "order_comment": txn.order_comment,
        "currency": cfg["CURRENCY_CODE"],
        "vat_percent": f"{rate_bps / 100:g}",
        "lines": lines,
        "subtotal_cents": subtotal,
        "vat_cents": vat,
        "total_cents": txn.total_amount_cents,
        "item_count": txn.item_count,
        "amount_in_words": amount_in_words(
            txn.total_amount_cents, cfg["CURRENCY_WORD"], cfg["CURRENCY_SUBUNIT_WORD"]
        ),
    }


class InvoicePDFRenderer:
    """Render an invoice document dict as an A4 PDF."""

    def __init__(self):
        self.styles = getSampleStyleSheet()
        self.styles.add(ParagraphStyle(
            name="InvoiceTitle",
            parent=self.styles["Heading1"],
            fontSize=18,
            alignment=TA_CENTER,
            spaceAfter=6,
        ))
        self.styles.add(ParagraphStyle(
            name="InvoiceSubtitle",
            parent=self.styles["Heading2"],
            fontSize=12,
            alignment=TA_CENTER,
            spaceAfter=12,
            textColor=colors.HexColor("#7f8c8d"),
        ))
        self.styles.add(ParagraphStyle(
            name="Small",
            parent=self.styles["Normal"],
            fontSize=9,
            leading=12,
        ))

    def _header(self, doc: dict) -> Table:
        details = [
            f"<b>Invoice #:</b> {doc['invoice_number'] or '-'}",
            f"<b>Date:</b> {doc['date']}",
            f"<b>Time:</b> {doc['time']}",
            f"<b>Payment:</b> {doc['payment_method'].replace('_', ' ').upper()}",
        ]
        if doc["payment_reference"]:
            details.append(f"<b>Ref #:</b> {escape(doc['payment_reference'])}")
        details.append(f"<b>Seller:</b> {escape(doc['seller_name'])}")

        customer = doc["customer"]
        details += ["", "<b>Bill To:</b>", f"<b>{escape(customer['name'])}</b>"]
        if customer["mobile"]:
            details.append(escape(customer["mobile"]))
        if customer["address"]:
            details.append(escape(customer["address"]))
        if customer["trn"]:
            details.append(f"<b>TRN:</b> {escape(customer['trn'])}")

        store = doc["store"]
        seller_block = [f"<b>{escape(store['name'])}</b>"]
        if store["address"]:
            seller_block += [escape(part) for part in store["address"].splitlines()]
        if store["trn"]:
            seller_block.append(f"<b>TRN:</b> {store['trn']}")

        left = Paragraph("<br/>".join(details), self.styles["Small"])
        right = Paragraph("<br/>".join(seller_block), self.styles["Small"])
        table = Table([[left, right]], colWidths=[260, 260])
        table.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "TOP")]))
        return table

    def _lines(self, doc: dict) -> Table:
        cur = doc["currency"]
        data = [[
            "Barcode", "Description", "Qty", f"Rate ({cur})",
            f"Taxable ({cur})", "VAT %", f"VAT ({cur})", f"Total ({cur})",
        ]]
        for line in doc["lines"]:
            data.append([
                line["upc"],
                Paragraph(escape(line["description"]), self.styles["Small"]),
                str(line["quantity"]),
                _money(line["unit_price_cents"]),
                _money(line["taxable_cents"]),
                f"{doc['vat_percent']}%",
                _money(line["vat_cents"]),
                _money(line["total_cents"]),
            ])
        data.append(["TOTAL", "", str(doc["item_count"]), "",
                     _money(doc["subtotal_cents"]), "", _money(doc["vat_cents"]), _money(doc["total_cents"])])

        table = Table(data, colWidths=[62, 140, 30, 50, 62, 38, 56, 66], repeatRows=1)
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#2c3e50")),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 8),
            ("ALIGN", (2, 1), (-1, -1), "RIGHT"),
            ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
            ("LINEABOVE", (0, -1), (-1, -1), 1, colors.black),
            ("GRID", (0, 0), (-1, -2), 0.5, colors.grey),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ]))
        return table

    def _totals(self, doc: dict) -> Table:
        cur = doc["currency"]
        data = [
            ["Subtotal", f"{cur} {_money(doc['subtotal_cents'])}"],
            [f"Tax ({doc['vat_percent']}%)", f"{cur} {_money(doc['vat_cents'])}"],
            ["Grand Total", f"{cur} {_money(doc['total_cents'])}"],
        ]
        table = Table(data, colWidths=[120, 120], hAlign="RIGHT")
        table.setStyle(TableStyle([
            ("ALIGN", (1, 0), (1, -1), "RIGHT"),
            ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
            ("LINEABOVE", (0, -1), (-1, -1), 1, colors.black),
        ]))
        return table

    def render(self, doc: dict) -> bytes:
        buffer = io.BytesIO()
        pdf = SimpleDocTemplate(
            buffer,
            pagesize=A4,
            rightMargin=36,
            leftMargin=36,
            topMargin=36,
            bottomMargin=36,
            title=f"Invoice {doc['invoice_number'] or doc['transaction_id']}",
        )

        story = [
            Paragraph(escape(doc["store"]["name"]), self.styles["InvoiceTitle"]),
            Paragraph("TAX INVOICE", self.styles["InvoiceSubtitle"]),
            self._header(doc),
            Spacer(1, 12),
            self._lines(doc),
            Spacer(1, 12),
            self._totals(doc),
            Spacer(1, 8),
            Paragraph(f"<b>Amount in Words:</b> {doc['amount_in_words']}", self.styles["Small"]),
        ]
        if doc["order_comment"]:
            story += [Spacer(1, 8), Paragraph(f"<b>Comment:</b> {escape(doc['order_comment'])}", self.styles["Small"])]

        pdf.build(story)
        return buffer.getvalue()


def render_invoice_pdf(txn: Transaction) -> bytes:
    return InvoicePDFRenderer().render(build_invoice_document(txn))
