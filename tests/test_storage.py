"""Tests for the volatile scan session store."""
import pytest

from scan_backend.lifecycle import EmailStatus, InvalidStatusTransition
from scan_backend.scanning import DuplicateBarcodeError
from scan_backend.storage import ScanSessionStore


@pytest.fixture
def store():
    return ScanSessionStore()


# ============================================================================
# CREATE / GET
# ============================================================================

def test_create_assigns_ids_from_one(store):
    first = store.create("FS-1001", ["A"])
    second = store.create("FS-1002")

    assert (first.id, second.id) == (1, 2)
    assert first.email_sent == EmailStatus.PENDING
    assert first.barcodes == ["A"]
    assert second.barcodes == []
    assert first.created_at.tzinfo is not None


def test_ids_never_reused_after_delete(store):
    store.create("FS-1")
    store.create("FS-2")
    assert store.delete(2) is True

    assert store.create("FS-3").id == 3


def test_get_unknown_returns_none(store):
    assert store.get(99) is None


def test_returned_sessions_are_copies(store):
    created = store.create("FS-1", ["A"])
    created.barcodes.append("B")

    fetched = store.get(created.id)
    fetched.barcodes.append("C")

    assert store.get(created.id).barcodes == ["A"]


def test_create_copies_input_list(store):
    codes = ["A"]
    session = store.create("FS-1", codes)
    codes.append("B")

    assert store.get(session.id).barcodes == ["A"]


# ============================================================================
# UPDATE
# ============================================================================

def test_update_status_keeps_barcodes_and_created_at(store):
    session = store.create("FS-1", ["A", "B"])

    updated = store.update(session.id, email_sent=EmailStatus.SENT)

    assert updated.email_sent == EmailStatus.SENT
    assert updated.barcodes == ["A", "B"]
    assert updated.created_at == session.created_at
    assert updated.delivery_note_number == "FS-1"


def test_update_barcodes_replaces_list(store):
    session = store.create("FS-1", ["A", "B"])

    updated = store.update(session.id, barcodes=["C"])

    assert updated.barcodes == ["C"]
    assert updated.email_sent == EmailStatus.PENDING


def test_update_with_no_fields_is_noop(store):
    session = store.create("FS-1", ["A"])
    assert store.update(session.id).to_dict() == session.to_dict()


def test_update_accepts_plain_status_strings(store):
    session = store.create("FS-1")
    assert store.update(session.id, email_sent="failed").email_sent == EmailStatus.FAILED


def test_update_unknown_returns_none(store):
    assert store.update(5, barcodes=["A"]) is None


def test_update_rejects_backward_transition(store):
    session = store.create("FS-1")
    store.update(session.id, email_sent=EmailStatus.FAILED)

    with pytest.raises(InvalidStatusTransition):
        store.update(session.id, email_sent=EmailStatus.PENDING)

    assert store.get(session.id).email_sent == EmailStatus.FAILED


# ============================================================================
# APPEND / DELETE / LIST
# ============================================================================

def test_append_barcode(store):
    session = store.create("FS-1", ["A"])

    updated = store.append_barcode(session.id, "B")

    assert updated.barcodes == ["A", "B"]


def test_append_duplicate_rejected(store):
    session = store.create("FS-1", ["A", "B"])

    with pytest.raises(DuplicateBarcodeError):
        store.append_barcode(session.id, "A")

    assert store.get(session.id).barcodes == ["A", "B"]


def test_append_unknown_returns_none(store):
    assert store.append_barcode(1, "A") is None


def test_delete(store):
    session = store.create("FS-1")

    assert store.delete(session.id) is True
    assert store.delete(session.id) is False
    assert store.get(session.id) is None


def test_list_in_id_order(store):
    store.create("FS-1")
    store.create("FS-2")
    store.create("FS-3")
    store.delete(2)

    assert [s.delivery_note_number for s in store.list()] == ["FS-1", "FS-3"]
    assert len(store) == 2


def test_to_dict(store):
    data = store.create("FS-1", ["A"]).to_dict()

    assert data["id"] == 1
    assert data["deliveryNoteNumber"] == "FS-1"
    assert data["barcodes"] == ["A"]
    assert data["emailSent"] == "pending"
    assert "T" in data["createdAt"]
