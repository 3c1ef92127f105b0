# scan_backend/qr_parser/__init__.py

"""
Structured QR payload package.

Exposes:

    parse_qr_code(raw: str) -> ParsedQRData | None
    calculate_total_weight(codes) -> float
    group_by_order(codes) -> {order_number: [ParsedQRData, ...]}
    format_weight(weight) -> "12.5 kg"
    summarize_codes(codes) -> dict

Plain barcodes are never an error: they parse to None and are skipped by
the weight and order aggregations.
"""

from .qr_utils import (
    ParsedQRData,
    parse_qr_code,
    parse_weight,
    is_structured,
    build_structured_code,
)
from .aggregation import (
    calculate_total_weight,
    group_by_order,
    format_weight,
    summarize_codes,
)
