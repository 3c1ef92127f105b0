# scan_backend/qr_parser/aggregation.py

from __future__ import annotations

from typing import Dict, Any, Iterable, List

from .qr_utils import ParsedQRData, parse_qr_code

WEIGHT_UNIT = "kg"


def calculate_total_weight(codes: Iterable[str]) -> float:
    """Sum the weight of every structured code; plain barcodes count as 0."""
    total = 0.0
    for code in codes:
        parsed = parse_qr_code(code)
        if parsed:
            total += parsed.weight
    return total


def group_by_order(codes: Iterable[str]) -> Dict[str, List[ParsedQRData]]:
    """
    Group structured codes by order number.

    Keys keep first-seen order and items keep scan order. Plain barcodes are
    left out.
    """
    groups: Dict[str, List[ParsedQRData]] = {}
    for code in codes:
        parsed = parse_qr_code(code)
        if parsed:
            groups.setdefault(parsed.order_number, []).append(parsed)
    return groups


def format_weight(weight: float) -> str:
    return f"{weight:.1f} {WEIGHT_UNIT}"


def summarize_codes(codes: Iterable[str]) -> Dict[str, Any]:
    """
    Build the report payload for a list of scanned codes:

    {
        "totalCount": int,
        "structuredCount": int,
        "unstructuredCount": int,
        "totalWeight": float,
        "totalWeightFormatted": "12.5 kg",
        "orders": [
            {"orderNumber": str, "itemCount": int, "totalWeight": float,
             "totalWeightFormatted": str, "items": [ParsedQRData dict, ...]},
        ],
        "unstructured": [str, ...],
    }
    """
    codes = list(codes)
    groups = group_by_order(codes)
    unstructured = [c for c in codes if parse_qr_code(c) is None]
    total_weight = calculate_total_weight(codes)

    orders = []
    for order_number, items in groups.items():
        order_weight = sum(item.weight for item in items)
        orders.append(
            {
                "orderNumber": order_number,
                "itemCount": len(items),
                "totalWeight": order_weight,
                "totalWeightFormatted": format_weight(order_weight),
                "items": [item.to_dict() for item in items],
            }
        )

    return {
        "totalCount": len(codes),
        "structuredCount": len(codes) - len(unstructured),
        "unstructuredCount": len(unstructured),
        "totalWeight": total_weight,
        "totalWeightFormatted": format_weight(total_weight),
        "orders": orders,
        "unstructured": unstructured,
    }
