"""
Allocation ledger codec tests.

Verifies:
- Missing, null and legacy (no ``reserved``) documents decode
- Transforms never mutate their input ledger
- allocated >= reserved >= 0 is enforced on every update
- Totals and unallocated remainder arithmetic
"""

from datetime import datetime, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from retail_kernel.domain.allocation_ledger import (
    EMPTY_LEDGER,
    StoreAllocation,
    decode_store_allocations,
    encode_store_allocations,
    get_allocated_store_ids,
    get_store_allocation,
    get_total_allocated,
    get_total_reserved,
    has_store_allocation,
    remove_store_allocation,
    unallocated_quantity,
    update_store_allocation,
    validate_total_allocations,
)
from retail_kernel.exceptions import InvalidAllocationError

AT = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestDecode:
    def test_none_decodes_to_empty(self):
        assert decode_store_allocations(None) == {}

    def test_empty_map_decodes_to_empty(self):
        assert decode_store_allocations({}) == {}

    def test_entry_without_reserved_defaults_to_zero(self):
        ledger = decode_store_allocations({
            "s1": {"allocated": 40, "lastUpdated": "2024-01-01T12:00:00+00:00", "updatedBy": "u"},
        })

        assert ledger["s1"] == StoreAllocation(allocated=40, reserved=0, last_updated=AT, updated_by="u")

    def test_persisted_shape_uses_camel_case(self):
        ledger = update_store_allocation(EMPTY_LEDGER, "s1", 60, 5, "user-1", AT)

        assert encode_store_allocations(ledger) == {
            "s1": {
                "allocated": 60,
                "reserved": 5,
                "lastUpdated": "2024-01-01T12:00:00+00:00",
                "updatedBy": "user-1",
            }
        }

    def test_decoded_ledger_is_read_only(self):
        ledger = decode_store_allocations({"s1": {"allocated": 1}})

        with pytest.raises(TypeError):
            ledger["s2"] = StoreAllocation(allocated=1)


class TestUpdate:
    def test_update_returns_new_ledger(self):
        original = update_store_allocation(EMPTY_LEDGER, "s1", 10, 0, "u", AT)

        updated = update_store_allocation(original, "s2", 5, 0, "u", AT)

        assert get_allocated_store_ids(original) == ["s1"]
        assert sorted(get_allocated_store_ids(updated)) == ["s1", "s2"]

    def test_update_replaces_entry_and_stamps(self):
        ledger = update_store_allocation(EMPTY_LEDGER, "s1", 10, 0, "first", AT)
        later = datetime(2024, 2, 1, tzinfo=timezone.utc)

        ledger = update_store_allocation(ledger, "s1", 25, 3, "second", later)

        entry = get_store_allocation(ledger, "s1")
        assert entry.allocated == 25
        assert entry.reserved == 3
        assert entry.available == 22
        assert entry.updated_by == "second"
        assert entry.last_updated == later

    @pytest.mark.parametrize(
        "store_id, allocated, reserved, actor",
        [
            ("", 1, 0, "u"),
            ("s1", 1, 0, ""),
            ("s1", -1, 0, "u"),
            ("s1", 1, -1, "u"),
            ("s1", 1, 2, "u"),
        ],
    )
    def test_invalid_entries_rejected(self, store_id, allocated, reserved, actor):
        with pytest.raises(InvalidAllocationError):
            update_store_allocation(EMPTY_LEDGER, store_id, allocated, reserved, actor, AT)

    def test_zero_allocation_is_kept(self):
        ledger = update_store_allocation(EMPTY_LEDGER, "s1", 0, 0, "u", AT)

        assert has_store_allocation(ledger, "s1")
        assert get_store_allocation(ledger, "s1").available == 0


class TestQueries:
    def test_totals(self):
        ledger = update_store_allocation(EMPTY_LEDGER, "s1", 60, 10, "u", AT)
        ledger = update_store_allocation(ledger, "s2", 30, 5, "u", AT)

        assert get_total_allocated(ledger) == 90
        assert get_total_reserved(ledger) == 15
        assert unallocated_quantity(ledger, 100) == 10
        assert validate_total_allocations(ledger, 90)
        assert not validate_total_allocations(ledger, 89)

    def test_missing_store_returns_none(self):
        assert get_store_allocation(EMPTY_LEDGER, "nope") is None
        assert get_store_allocation(EMPTY_LEDGER, "") is None

    def test_remove_unknown_store_is_noop(self):
        ledger = update_store_allocation(EMPTY_LEDGER, "s1", 1, 0, "u", AT)

        assert remove_store_allocation(ledger, "s2") is ledger
        assert remove_store_allocation(ledger, "s1") == {}


entries = st.builds(
    lambda allocated, reserved_share: (allocated, min(allocated, reserved_share)),
    st.integers(min_value=0, max_value=10_000),
    st.integers(min_value=0, max_value=10_000),
)


class TestCodecProperties:
    @settings(max_examples=100)
    @given(st.dictionaries(st.text(min_size=1, max_size=12), entries, max_size=6))
    def test_encode_then_decode_preserves_entries(self, raw_entries):
        ledger = EMPTY_LEDGER
        for store_id, (allocated, reserved) in raw_entries.items():
            ledger = update_store_allocation(ledger, store_id, allocated, reserved, "u", AT)

        decoded = decode_store_allocations(encode_store_allocations(ledger))

        assert dict(decoded) == dict(ledger)
        assert all(e.allocated >= e.reserved >= 0 for e in decoded.values())
