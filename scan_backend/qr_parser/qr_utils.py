# scan_backend/qr_parser/qr_utils.py

"""
Helpers for decoding structured QR payloads.

A structured code carries four semicolon separated fields:

    <order number>;<article number>;<batch number>;<weight in kg>

e.g. "75555;S-3374-046-1565;G-2558-1;1500". Anything else (EAN, Code128,
free text, 3 or 5 fields) is a plain barcode and is passed through as an
opaque identifier.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Any, Optional

import math
import re

FIELD_DELIMITER = ";"
STRUCTURED_PART_COUNT = 4

# Leading decimal number, the same prefix a lenient float parser accepts.
# ASCII digits only; float() would also take other Unicode digits.
_NUMBER_PREFIX = re.compile(r"[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")


@dataclass(frozen=True)
class ParsedQRData:
    order_number: str
    article_number: str
    batch_number: str
    weight: float  # kg
    raw_data: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderNumber": self.order_number,
            "articleNumber": self.article_number,
            "batchNumber": self.batch_number,
            "weight": self.weight,
            "rawData": self.raw_data,
        }


def parse_weight(value: str) -> float:
    """
    Parse a weight field leniently.

    Accepts "," as decimal separator and ignores trailing garbage ("12,5 kg").
    Anything unparseable, negative or non-finite becomes 0.
    """
    text = value.strip().replace(",", ".", 1)
    match = _NUMBER_PREFIX.match(text)
    if not match:
        return 0.0
    weight = float(match.group(0))
    # <= also folds -0.0 into 0.0
    if not math.isfinite(weight) or weight <= 0:
        return 0.0
    return weight


def parse_qr_code(raw: str) -> Optional[ParsedQRData]:
    """Return the structured payload for ``raw`` or None for a plain barcode."""
    try:
        parts = raw.split(FIELD_DELIMITER)
        if len(parts) != STRUCTURED_PART_COUNT:
            return None

        order_number, article_number, batch_number = (p.strip() for p in parts[:3])
        # Four parts alone are not enough: a blank order, article or batch
        # makes the code a plain barcode and its weight is not counted.
        if not (order_number and article_number and batch_number):
            return None

        return ParsedQRData(
            order_number=order_number,
            article_number=article_number,
            batch_number=batch_number,
            weight=parse_weight(parts[3]),
            raw_data=raw,
        )
    except Exception:
        return None


def is_structured(raw: str) -> bool:
    return parse_qr_code(raw) is not None


def build_structured_code(
    order_number: str,
    article_number: str,
    batch_number: str,
    weight: Optional[str] = "",
) -> str:
    """
    Assemble a structured code from manually typed fields.

    A blank weight defaults to "0". Raises ValueError when a required field
    is blank or any field contains the delimiter.
    """
    fields = {
        "order number": (order_number or "").strip(),
        "article number": (article_number or "").strip(),
        "batch number": (batch_number or "").strip(),
    }
    for label, value in fields.items():
        if not value:
            raise ValueError(f"The {label} is required.")

    weight_text = (weight or "").strip() or "0"
    values = list(fields.values()) + [weight_text]
    if any(FIELD_DELIMITER in v for v in values):
        raise ValueError(f"Fields may not contain '{FIELD_DELIMITER}'.")

    return FIELD_DELIMITER.join(values)
