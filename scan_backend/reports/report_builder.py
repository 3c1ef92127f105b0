# scan_backend/reports/report_builder.py

"""
Report content for a scan session: subject line, HTML body, plain-text
fallback and the CSV attachment.

CSV layout (";" separated, one row per scanned code):

    Index;Ordernumber;Articlenumber;Batchnumber;Weight;RawData
    1;75555;S-3374-046-1565;G-2558-1;1500.0;"75555;S-3374-046-1565;G-2558-1;1500"
    2;;;;0;4006381333931
"""

from __future__ import annotations

from datetime import datetime, timezone
from html import escape, unescape
from typing import Dict, Any, Iterable, List, Optional
from zoneinfo import ZoneInfo

import csv
import io
import os
import re

from scan_backend.qr_parser import parse_qr_code, format_weight

REPORT_TIMEZONE = os.getenv("REPORT_TIMEZONE", "Europe/Stockholm")
APP_NAME = os.getenv("APP_NAME", "BarcodeBuddy")

CSV_HEADER = ["Index", "Ordernumber", "Articlenumber", "Batchnumber", "Weight", "RawData"]
CSV_DELIMITER = ";"


def _local(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(ZoneInfo(REPORT_TIMEZONE))


def build_subject(delivery_note_number: str) -> str:
    return f"Leveransrapport - {delivery_note_number}"


def csv_filename(delivery_note_number: str) -> str:
    safe = re.sub(r"[^\w.-]+", "_", delivery_note_number).strip("_") or "rapport"
    return f"streckkoder-{safe}.csv"


def build_csv(barcodes: Iterable[str]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, delimiter=CSV_DELIMITER, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for index, code in enumerate(barcodes, start=1):
        parsed = parse_qr_code(code)
        if parsed:
            writer.writerow(
                [
                    index,
                    parsed.order_number,
                    parsed.article_number,
                    parsed.batch_number,
                    parsed.weight,
                    code,
                ]
            )
        else:
            writer.writerow([index, "", "", "", 0, code])
    return buf.getvalue()


def _order_table(order: Dict[str, Any]) -> str:
    rows = "".join(
        "<tr><td>{}</td><td>{}</td><td>{}</td></tr>".format(
            escape(item["articleNumber"]),
            escape(item["batchNumber"]),
            escape(format_weight(item["weight"])),
        )
        for item in order["items"]
    )
    return f"""
      <h3>Order {escape(order["orderNumber"])} ({order["itemCount"]} st, {escape(order["totalWeightFormatted"])})</h3>
      <table>
        <thead><tr><th>Artikelnummer</th><th>Batchnummer</th><th>Vikt</th></tr></thead>
        <tbody>{rows}</tbody>
      </table>"""


def build_html(
    delivery_note_number: str,
    created_at: datetime,
    barcodes: List[str],
    summary: Dict[str, Any],
    generated_at: Optional[datetime] = None,
) -> str:
    created = _local(created_at)
    generated = _local(generated_at or datetime.now(timezone.utc))

    orders_html = "".join(_order_table(order) for order in summary["orders"])
    plain_rows = "".join(
        f"<tr><td>{i}</td><td>{escape(code)}</td></tr>"
        for i, code in enumerate(summary["unstructured"], start=1)
    )
    plain_html = ""
    if plain_rows:
        plain_html = f"""
      <h3>Övriga streckkoder ({summary["unstructuredCount"]})</h3>
      <table>
        <thead><tr><th>Nr</th><th>Streckkod</th></tr></thead>
        <tbody>{plain_rows}</tbody>
      </table>"""

    return f"""<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"><style>
  body {{ font-family: Arial, sans-serif; background: #f5f5f5; padding: 20px; }}
  .container {{ background: white; max-width: 600px; margin: auto; padding: 30px; border-radius: 8px; }}
  .header {{ background: #2563eb; color: white; padding: 20px; border-radius: 8px 8px 0 0; margin: -30px -30px 30px -30px; }}
  table {{ width: 100%; border-collapse: collapse; margin-top: 12px; }}
  th, td {{ padding: 8px; border-bottom: 1px solid #e5e7eb; text-align: left; }}
  .summary {{ background: #eff6ff; padding: 15px; border-radius: 6px; margin-top: 20px; font-weight: bold; }}
  .footer {{ margin-top: 30px; border-top: 1px solid #e5e7eb; padding-top: 20px; font-size: 14px; color: #6b7280; }}
</style></head>
<body><div class="container">
  <div class="header"><h1>{escape(APP_NAME)} - Leveransrapport</h1></div>
  <div class="info-section">
    <p><strong>Följesedelnummer:</strong> {escape(delivery_note_number)}</p>
    <p><strong>Skanningsdatum:</strong> {created.strftime("%Y-%m-%d")}</p>
    <p><strong>Skanningstid:</strong> {created.strftime("%H:%M:%S")}</p>
  </div>
  <div class="info-section">{orders_html}{plain_html}
    <div class="summary">
      Totalt antal skannade artiklar: {len(barcodes)}<br>
      Total vikt: {escape(summary["totalWeightFormatted"])}
    </div>
  </div>
  <div class="footer">
    <p>Denna rapport genererades automatiskt av streckkodsskannersystemet.</p>
    <p>{generated.strftime("%Y-%m-%d %H:%M:%S")}</p>
  </div>
</div></body>
</html>
"""


def build_text(html: str) -> str:
    """Plain-text fallback: tags dropped, blank runs collapsed."""
    text = re.sub(r"<style.*?</style>", "", html, flags=re.DOTALL)
    text = re.sub(r"<br\s*/?>|</(p|tr|h1|h3|div)>", "\n", text)
    text = re.sub(r"<[^>]*>", " ", text)
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
    return unescape("\n".join(line for line in lines if line))
