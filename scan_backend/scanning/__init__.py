# scan_backend/scanning/__init__.py

from .scan_buffer import (
    DuplicateBarcodeError,
    ScannedEntry,
    ScanBuffer,
    is_duplicate,
)
