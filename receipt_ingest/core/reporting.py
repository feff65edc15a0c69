"""
CSV export and PDF spending reports.
"""

import csv
import datetime as dt
from pathlib import Path
from typing import Dict, List, Sequence

from .models import ReceiptRecord
from .utils import money_fmt

ITEM_FIELDS = ["store_name", "purchase_datetime", "line_no", "product_name",
               "qty", "unit_price", "total_price", "category"]


def write_items_csv(records: Sequence[ReceiptRecord], out_csv: Path):
    """Write one CSV row per line item, tagged with its receipt's store and date."""
    with out_csv.open("w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=ITEM_FIELDS)
        w.writeheader()
        for record in records:
            for item in record.items:
                row = item.to_dict()
                row["store_name"] = record.store_name or ""
                row["purchase_datetime"] = record.purchase_datetime_iso or ""
                w.writerow({k: row.get(k) for k in ITEM_FIELDS})


def build_spending_pdf(overview: Dict[str, List[Dict]], out_pdf: Path,
                       title: str = "Spending Report") -> int:
    """
    Build a PDF with top products and top stores.

    Args:
        overview: Output of database.spending_overview()
        out_pdf: Output PDF path
        title: Report title

    Returns:
        Number of pages written
    """
    from reportlab.lib.pagesizes import A4
    from reportlab.lib.units import inch
    from reportlab.pdfgen import canvas

    c = canvas.Canvas(out_pdf.as_posix(), pagesize=A4)
    width, height = A4
    pages = 1

    y = height - 1 * inch
    c.setFont("Helvetica-Bold", 16)
    c.drawString(1 * inch, y, title)
    y -= 0.3 * inch
    c.setFont("Helvetica", 10)
    timestamp = dt.datetime.now().isoformat(timespec='seconds')
    c.drawString(1 * inch, y, f"Generated: {timestamp}")
    y -= 0.5 * inch

    sections = [
        ("Top products (by quantity)", ("Product", "Quantity", "Sum"),
         [((r.get("name") or "")[:45], f"{(r.get('qty') or 0):.2f}", money_fmt(r.get("sum") or 0.0))
          for r in overview.get("by_product", [])]),
        ("Top stores", ("Store", "Receipts", "Total"),
         [((r.get("store") or "")[:45], str(r.get("receipts") or 0), money_fmt(r.get("total") or 0.0))
          for r in overview.get("by_store", [])]),
    ]

    for heading, columns, rows in sections:
        if y < 2 * inch:
            c.showPage()
            pages += 1
            y = height - 1 * inch

        c.setFont("Helvetica-Bold", 12)
        c.drawString(1 * inch, y, heading)
        y -= 0.3 * inch

        # Column headers
        c.setFont("Helvetica-Bold", 9)
        c.drawString(1.00 * inch, y, columns[0])
        c.drawRightString(5.50 * inch, y, columns[1])
        c.drawRightString(7.00 * inch, y, columns[2])
        y -= 0.15 * inch
        c.line(1.0 * inch, y, 7.1 * inch, y)
        y -= 0.18 * inch

        c.setFont("Helvetica", 9)
        if not rows:
            c.drawString(1.00 * inch, y, "(no data)")
            y -= 0.18 * inch
        for label, middle, right in rows:
            c.drawString(1.00 * inch, y, label)
            c.drawRightString(5.50 * inch, y, middle)
            c.drawRightString(7.00 * inch, y, right)
            y -= 0.18 * inch

            if y < 0.8 * inch:
                c.showPage()
                pages += 1
                y = height - 1 * inch
                c.setFont("Helvetica-Bold", 12)
                c.drawString(1 * inch, y, f"{heading} (cont.)")
                y -= 0.3 * inch
                c.setFont("Helvetica", 9)

        y -= 0.3 * inch

    c.showPage()
    c.save()
    return pages
