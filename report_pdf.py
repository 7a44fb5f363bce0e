# report_pdf.py
from io import BytesIO
from datetime import date
from typing import Any, Dict

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import Paragraph, Table, TableStyle

ROWS_PER_PAGE = 32
EMPTY_LABEL = "Aucune entrée pour cette période."


def _fmt_money(v):
    try:
        return f"{float(v):,.2f}"
    except (TypeError, ValueError):
        return "—"


def _fmt_km(v):
    try:
        return f"{int(v):,}".replace(",", " ")
    except (TypeError, ValueError):
        return "—"


def _fr_date(iso: str) -> str:
    return date.fromisoformat(iso).strftime("%d/%m/%Y")


def _draw_paragraph(c, text, style, x, y, max_width):
    p = Paragraph(text, style)
    w, h = p.wrapOn(c, max_width, 1000)
    p.drawOn(c, x, y - h)
    return y - h


def build_report_pdf(report: Dict[str, Any], site: str) -> bytes:
    """
    Consumption report (A4 portrait).

    Columns: Date, Chauffeur, Plaque, Odomètre (km), Litres, Coût (MAD).
    The summary (total cost, total liters) follows the last table page.
    """
    header = ["Date", "Chauffeur", "Plaque", "Odomètre (km)", "Litres", "Coût (MAD)"]
    rows = [
        [
            r.get("local_date") or "—",
            r.get("driver_name") or "",
            r.get("plate_number") or "",
            _fmt_km(r.get("odometer")),
            _fmt_money(r.get("liters")),
            _fmt_money(r.get("total_cost")),
        ]
        for r in report["rows"]
    ]

    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    page_w, page_h = A4
    x_margin = 14 * mm
    y_margin = 16 * mm
    max_width = page_w - 2 * x_margin

    styles = getSampleStyleSheet()
    title_style = styles["Heading2"]
    body_style = styles["Normal"]
    summary_style = styles["Heading4"]

    col_widths = [26*mm, 48*mm, 30*mm, 28*mm, 24*mm, 26*mm]
    table_style = TableStyle([
        ("FONT", (0, 0), (-1, 0), "Helvetica-Bold", 9),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1d4ed8")),
        ("ALIGN", (3, 1), (-1, -1), "RIGHT"),
        ("FONTSIZE", (0, 1), (-1, -1), 8),
        ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor("#d1d5db")),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f3f4f6")]),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
    ])

    chunks = [rows[i:i + ROWS_PER_PAGE] for i in range(0, len(rows), ROWS_PER_PAGE)] or [[]]
    y = page_h - y_margin
    for page_no, chunk in enumerate(chunks):
        if page_no:
            c.showPage()
            y = page_h - y_margin
        else:
            y = _draw_paragraph(c, f"Rapport de Consommation - {site}", title_style,
                                x_margin, y, max_width)
            y = _draw_paragraph(
                c,
                f"Période du {_fr_date(report['start'])} au {_fr_date(report['end'])}",
                body_style, x_margin, y, max_width,
            )
            if report.get("plate"):
                y = _draw_paragraph(c, f"Véhicule: {report['plate']}", body_style,
                                    x_margin, y, max_width)
            y -= 4 * mm

        data = [header] + (chunk if chunk else [[EMPTY_LABEL, "", "", "", "", ""]])
        table = Table(data, colWidths=col_widths)
        style = TableStyle(table_style.getCommands())
        if not chunk:
            style.add("SPAN", (0, 1), (-1, 1))
            style.add("ALIGN", (0, 1), (-1, 1), "CENTER")
        table.setStyle(style)
        tw, th = table.wrapOn(c, max_width, y - y_margin)
        table.drawOn(c, x_margin, y - th)
        y = y - th - 8 * mm

    if y < y_margin + 30 * mm:
        c.showPage()
        y = page_h - y_margin

    y = _draw_paragraph(c, "Résumé", summary_style, x_margin, y, max_width)
    y = _draw_paragraph(c, f"Coût Total: {_fmt_money(report['total_cost'])} MAD",
                        body_style, x_margin, y, max_width)
    _draw_paragraph(c, f"Litres Totals: {_fmt_money(report['total_liters'])} L",
                    body_style, x_margin, y, max_width)

    c.showPage()
    c.save()
    return buf.getvalue()
