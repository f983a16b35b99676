import pytest

from ledger_recon.merge import (
    clamp_confidence,
    fallback_row,
    merge_patch,
    repair_created_at,
)
from ledger_recon.models import CreatedAt


def test_overlay_keeps_every_other_field(make_row):
    original = make_row(
        bankName="Chase Business Checking",
        createdAt={"seconds": 1690000000, "nanoseconds": 5},
        userId="u-1",
    )

    merged = merge_patch(original, vendor="Amazon", gl_account="Office Supplies", confidence=0.9)

    assert merged.vendor == "Amazon"
    assert merged.gl_account == "Office Supplies"
    assert merged.confidence_score == 0.9
    for field in ("id", "bank_name", "date", "description", "amount_paid", "amount_received"):
        assert getattr(merged, field) == getattr(original, field)
    assert merged.user_id == "u-1"
    assert merged.created_at == CreatedAt(seconds=1690000000, nanoseconds=5)


def test_created_at_partial_patch_is_repaired_with_zero_nanos(make_row):
    original = make_row(createdAt={"seconds": 1690000000, "nanoseconds": 0})
    merged = merge_patch(
        original,
        vendor="Amazon",
        gl_account="Office Supplies",
        confidence=0.8,
        created_at={"seconds": 1690000000},
    )
    assert merged.to_record()["createdAt"] == {"seconds": 1690000000, "nanoseconds": 0}


def test_created_at_from_patch_when_original_has_none(make_row):
    original = make_row()
    assert not original.has_created_at

    merged = merge_patch(
        original, vendor=None, gl_account=None, confidence=0.1, created_at={"seconds": 17}
    )
    assert merged.created_at == CreatedAt(seconds=17, nanoseconds=0)


def test_created_at_absent_stays_absent(make_row):
    original = make_row()
    merged = merge_patch(original, vendor="X", gl_account="Travel", confidence=0.5)
    assert "createdAt" not in merged.to_record()

    garbled = merge_patch(
        original, vendor="X", gl_account="Travel", confidence=0.5, created_at="yesterday"
    )
    assert "createdAt" not in garbled.to_record()


def test_created_at_explicit_null_is_preserved(make_row):
    original = make_row(createdAt=None)
    assert original.has_created_at

    merged = merge_patch(original, vendor="X", gl_account="Travel", confidence=0.5, created_at=None)
    record = merged.to_record()
    assert "createdAt" in record and record["createdAt"] is None


@pytest.mark.parametrize(
    ("candidate", "expected"),
    [
        ({"seconds": 5, "nanoseconds": 7}, CreatedAt(seconds=5, nanoseconds=7)),
        ({"seconds": 5}, CreatedAt(seconds=5, nanoseconds=0)),
        ({"nanoseconds": 7}, CreatedAt(seconds=0, nanoseconds=7)),
        ({"seconds": "5"}, CreatedAt(seconds=5, nanoseconds=0)),
        ({"seconds": "soon"}, None),
        ({}, None),
        (None, None),
        ([1, 2], None),
    ],
)
def test_repair_created_at(candidate, expected):
    assert repair_created_at(candidate) == expected


def test_fallback_row_uses_original_or_placeholder(make_row):
    categorized = make_row(vendor="Amazon", glAccount="Office Supplies")
    blank = make_row(id="t2", vendor="", glAccount="  ")

    a = fallback_row(categorized)
    b = fallback_row(blank)

    assert (a.vendor, a.gl_account, a.confidence_score) == ("Amazon", "Office Supplies", 0.0)
    assert (b.vendor, b.gl_account, b.confidence_score) == ("-", "-", 0.0)


@pytest.mark.parametrize(
    ("value", "expected"),
    [(0.5, 0.5), (1.7, 1.0), (-0.2, 0.0), (1, 1.0), ("0.9", None), (True, None), (None, None)],
)
def test_clamp_confidence(value, expected):
    assert clamp_confidence(value) == expected
