"""
FIFO sale planner tests.

Verifies:
- Oldest batch is consumed first
- Each take is bounded by store availability and batch remaining
- Later lines of the same sale see what earlier lines took
- Shortfalls raise before any plan exists
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from retail_kernel.domain.reservation import (
    BatchCandidate,
    SaleComponent,
    SaleLineRequest,
    plan_fifo_consumption,
    plan_sale,
)
from retail_kernel.exceptions import InsufficientInventoryError, InvalidTransferRequestError

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _candidate(batch_id, day, remaining, available, price="10"):
    return BatchCandidate(
        batch_id=batch_id,
        inventory_id="inv-1",
        created_at=EPOCH + timedelta(days=day),
        remaining_quantity=remaining,
        store_available=available,
        unit_price=Decimal(price),
    )


def _line(quantity, per_product=1, product_id="p-1"):
    return SaleLineRequest(
        product_id=product_id,
        product_name="Prepaid Meter Kit",
        quantity=quantity,
        components=(SaleComponent("inv-1", per_product),),
    )


class TestFifoConsumption:
    def test_oldest_first_regardless_of_input_order(self):
        newer = _candidate("new", 5, 50, 50)
        older = _candidate("old", 1, 50, 50)

        takes, shortfall = plan_fifo_consumption([newer, older], 60)

        assert [(c.batch_id, q) for c, q in takes] == [("old", 50), ("new", 10)]
        assert shortfall == 0

    def test_take_bounded_by_store_available(self):
        takes, shortfall = plan_fifo_consumption([_candidate("b1", 1, 100, 5)], 8)

        assert [q for _, q in takes] == [5]
        assert shortfall == 3

    def test_take_bounded_by_remaining(self):
        takes, _ = plan_fifo_consumption([_candidate("b1", 1, 4, 20)], 8)

        assert [q for _, q in takes] == [4]

    def test_consumed_reduces_capacity(self):
        takes, shortfall = plan_fifo_consumption(
            [_candidate("b1", 1, 10, 10)], 5, consumed={"b1": 8},
        )

        assert [q for _, q in takes] == [2]
        assert shortfall == 3


class TestPlanSale:
    def test_multi_batch_plan_prices_each_take(self):
        plan = plan_sale(
            [_line(15)],
            {"inv-1": [_candidate("b1", 1, 10, 10, "10"), _candidate("b2", 2, 10, 10, "12")]},
        )

        assert plan.quantity_by_batch() == {"b1": 10, "b2": 5}
        assert plan.total_price == Decimal("160")

    def test_components_multiply_quantity(self):
        plan = plan_sale([_line(3, per_product=2)], {"inv-1": [_candidate("b1", 1, 10, 10)]})

        assert plan.quantity_by_batch() == {"b1": 6}

    def test_second_line_sees_first_line_takes(self):
        with pytest.raises(InsufficientInventoryError) as exc_info:
            plan_sale(
                [_line(6, product_id="p-1"), _line(6, product_id="p-2")],
                {"inv-1": [_candidate("b1", 1, 10, 10)]},
                store_id="store-a",
            )

        assert exc_info.value.product_id == "p-2"
        assert exc_info.value.required == 6
        assert exc_info.value.available == 4
        assert exc_info.value.store_id == "store-a"

    def test_no_candidates_is_insufficient(self):
        with pytest.raises(InsufficientInventoryError) as exc_info:
            plan_sale([_line(1)], {})

        assert exc_info.value.available == 0

    def test_non_positive_line_rejected(self):
        with pytest.raises(InvalidTransferRequestError):
            plan_sale([_line(0)], {"inv-1": [_candidate("b1", 1, 10, 10)]})

    @pytest.mark.parametrize("per_product", [0, -2])
    def test_non_positive_component_quantity_rejected(self, per_product):
        with pytest.raises(InvalidTransferRequestError) as exc_info:
            plan_sale([_line(3, per_product=per_product)], {"inv-1": [_candidate("b1", 1, 10, 10)]})

        assert exc_info.value.details["quantity_per_product"] == per_product

    def test_line_without_components_consumes_nothing(self):
        line = SaleLineRequest(product_id="svc", product_name="Installation", quantity=1)

        assert plan_sale([line], {}).takes == ()


candidate_lists = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=30),
        st.integers(min_value=0, max_value=50),
        st.integers(min_value=0, max_value=50),
    ),
    max_size=6,
)


class TestPlannerProperties:
    @settings(max_examples=150)
    @given(candidate_lists, st.integers(min_value=1, max_value=120))
    def test_takes_never_exceed_capacity(self, raw, required):
        candidates = [
            _candidate(f"b{i}", day, remaining, min(available, remaining))
            for i, (day, remaining, available) in enumerate(raw)
        ]

        takes, shortfall = plan_fifo_consumption(candidates, required)

        taken = sum(q for _, q in takes)
        capacity = sum(c.store_available for c in candidates)
        assert taken + shortfall == required
        assert taken <= capacity
        for candidate, quantity in takes:
            assert 0 < quantity <= candidate.store_available
        assert shortfall == max(0, required - capacity)
