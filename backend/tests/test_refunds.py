"""
Refund tests.

Verifies:
- Cumulative refunded quantity per part never exceeds the billed quantity
- A full refund after partial refunds restores only the remainder
- Refund history attaches each item to exactly the refund that created it
- Bill status and refunded total always agree with the stored refunds
- A rejected refund persists nothing
"""

import pytest

from carparts.errors import InvalidStateError, OverRefundError, PermissionDeniedError, ValidationError
from carparts.models import Bill, Part, Refund, RefundItem, StockMovement
from carparts.services import refund_service, reservation_service, sales_service, stock_ledger
from carparts.validation import LineItemInput


def _stock(db_session, part_id):
    db_session.expire_all()
    part = db_session.get(Part, part_id)
    return part.available_stock, part.sold_stock, part.total_stock


def _bill(db_session, bill_id):
    db_session.expire_all()
    return db_session.get(Bill, bill_id)


@pytest.fixture
def sold(db_session, make_part, general_user):
    """A bill for 3 x part A at 1000 and 2 x part B at 2500."""
    part_a = make_part(name="Spark plug", total_stock=5, recommended_price_cents=1000)
    part_b = make_part(name="Wiper blade", total_stock=4, recommended_price_cents=2500)
    bill = sales_service.sell(
        [
            LineItemInput(part_id=part_a.id, quantity=3),
            LineItemInput(part_id=part_b.id, quantity=2),
        ],
        customer_name="John",
        actor=general_user,
    )
    return bill, part_a, part_b


class TestPartialRefund:

    def test_restores_stock_and_amount(self, db_session, sold, admin_user):
        bill, part_a, _ = sold

        record = refund_service.refund(
            bill.id,
            refund_type="partial",
            refund_reason="Wrong size",
            items=[LineItemInput(part_id=part_a.id, quantity=2)],
            actor=admin_user,
        )

        assert record.refund_amount_cents == 2000
        assert record.refunded_by == admin_user.id
        bill = _bill(db_session, bill.id)
        assert bill.total_refunded_cents == 2000
        assert bill.status == "partially_refunded"
        assert _stock(db_session, part_a.id) == (4, 1, 5)

        movements = stock_ledger.list_movements(
            reference_type=stock_ledger.REFERENCE_REFUND, reference_id=record.id
        )
        assert len(movements) == 1
        assert movements[0].movement_type == stock_ledger.MOVEMENT_RETURN
        assert (movements[0].available_delta, movements[0].sold_delta) == (2, -2)

    def test_cumulative_over_refund_rejected(self, db_session, sold, admin_user):
        bill, part_a, _ = sold
        refund_service.refund(
            bill.id,
            refund_type="partial",
            refund_reason="First",
            items=[LineItemInput(part_id=part_a.id, quantity=2)],
            actor=admin_user,
        )

        with pytest.raises(OverRefundError) as exc:
            refund_service.refund(
                bill.id,
                refund_type="partial",
                refund_reason="Second",
                items=[LineItemInput(part_id=part_a.id, quantity=2)],
                actor=admin_user,
            )

        assert exc.value.details["bill_quantity"] == 3
        assert exc.value.details["already_refunded"] == 2
        assert exc.value.details["refundable_quantity"] == 1
        assert db_session.query(Refund).count() == 1
        assert _bill(db_session, bill.id).total_refunded_cents == 2000
        assert _stock(db_session, part_a.id) == (4, 1, 5)

    def test_over_refund_on_later_line_restores_nothing(self, db_session, sold, admin_user):
        bill, part_a, part_b = sold
        before = db_session.query(StockMovement).count()

        with pytest.raises(OverRefundError) as exc:
            refund_service.refund(
                bill.id,
                refund_type="partial",
                refund_reason="Mixed",
                items=[
                    LineItemInput(part_id=part_a.id, quantity=1),
                    LineItemInput(part_id=part_b.id, quantity=3),
                ],
                actor=admin_user,
            )

        assert exc.value.details["part_id"] == part_b.id
        assert _stock(db_session, part_a.id) == (2, 3, 5)
        assert _stock(db_session, part_b.id) == (2, 2, 4)
        assert db_session.query(Refund).count() == 0
        assert db_session.query(RefundItem).count() == 0
        assert db_session.query(StockMovement).count() == before
        bill = _bill(db_session, bill.id)
        assert (bill.total_refunded_cents, bill.status) == (0, "active")

    def test_lower_unit_price_allowed(self, db_session, sold, admin_user):
        bill, _, part_b = sold
        record = refund_service.refund(
            bill.id,
            refund_type="partial",
            refund_reason="Damaged packaging",
            items=[LineItemInput(part_id=part_b.id, quantity=1, unit_price_cents=1500)],
            actor=admin_user,
        )
        assert record.refund_amount_cents == 1500

    def test_higher_unit_price_rejected(self, db_session, sold, admin_user):
        bill, _, part_b = sold
        with pytest.raises(ValidationError):
            refund_service.refund(
                bill.id,
                refund_type="partial",
                refund_reason="Typo",
                items=[LineItemInput(part_id=part_b.id, quantity=1, unit_price_cents=9999)],
                actor=admin_user,
            )
        assert db_session.query(Refund).count() == 0

    def test_part_not_on_bill(self, db_session, sold, make_part, admin_user):
        bill, _, _ = sold
        other = make_part()
        with pytest.raises(ValidationError):
            refund_service.refund(
                bill.id,
                refund_type="partial",
                refund_reason="Wrong bill",
                items=[LineItemInput(part_id=other.id, quantity=1)],
                actor=admin_user,
            )

    def test_items_required(self, db_session, sold, admin_user):
        bill, _, _ = sold
        with pytest.raises(ValidationError):
            refund_service.refund(
                bill.id, refund_type="partial", refund_reason="No items", actor=admin_user
            )

    def test_amount_cross_check(self, db_session, sold, admin_user):
        bill, part_a, _ = sold
        with pytest.raises(ValidationError) as exc:
            refund_service.refund(
                bill.id,
                refund_type="partial",
                refund_reason="Mismatch",
                items=[LineItemInput(part_id=part_a.id, quantity=1)],
                refund_amount_cents=999,
                actor=admin_user,
            )
        assert exc.value.details["expected_refund_amount_cents"] == 1000


class TestFullRefund:

    def test_full_refund_of_untouched_bill(self, db_session, sold, admin_user):
        bill, part_a, part_b = sold

        record = refund_service.refund(
            bill.id, refund_type="full", refund_reason="Changed mind", actor=admin_user
        )

        assert record.refund_amount_cents == 3 * 1000 + 2 * 2500
        bill = _bill(db_session, bill.id)
        assert bill.status == "refunded"
        assert bill.total_refunded_cents == bill.total_amount_cents
        assert _stock(db_session, part_a.id) == (5, 0, 5)
        assert _stock(db_session, part_b.id) == (4, 0, 4)

    def test_full_after_partial_restores_only_remainder(self, db_session, sold, admin_user):
        bill, part_a, part_b = sold
        refund_service.refund(
            bill.id,
            refund_type="partial",
            refund_reason="One plug",
            items=[LineItemInput(part_id=part_a.id, quantity=1)],
            actor=admin_user,
        )

        record = refund_service.refund(
            bill.id, refund_type="full", refund_reason="Rest of it", actor=admin_user
        )

        assert record.refund_amount_cents == 2 * 1000 + 2 * 2500
        quantities = {item.part_id: item.quantity for item in record.items}
        assert quantities == {part_a.id: 2, part_b.id: 2}
        assert refund_service.refunded_quantities(bill.id) == {part_a.id: 3, part_b.id: 2}
        assert _stock(db_session, part_a.id) == (5, 0, 5)
        assert _stock(db_session, part_b.id) == (4, 0, 4)
        assert _bill(db_session, bill.id).status == "refunded"

    def test_full_after_discounted_partial_refunds_money_only(self, db_session, sold, admin_user):
        bill, part_a, part_b = sold
        refund_service.refund(
            bill.id,
            refund_type="partial",
            refund_reason="Everything back at a discount",
            items=[
                LineItemInput(part_id=part_a.id, quantity=3, unit_price_cents=500),
                LineItemInput(part_id=part_b.id, quantity=2, unit_price_cents=2000),
            ],
            actor=admin_user,
        )
        assert _bill(db_session, bill.id).status == "partially_refunded"

        record = refund_service.refund(
            bill.id, refund_type="full", refund_reason="Settle balance", actor=admin_user
        )

        assert record.refund_amount_cents == (3 * 500) + (2 * 500)
        assert db_session.query(RefundItem).filter_by(refund_id=record.id).count() == 0
        assert _stock(db_session, part_a.id) == (5, 0, 5)
        bill = _bill(db_session, bill.id)
        assert bill.status == "refunded"
        assert bill.total_refunded_cents == bill.total_amount_cents

    def test_refunded_bill_rejects_further_refunds(self, db_session, sold, admin_user):
        bill, part_a, _ = sold
        refund_service.refund(bill.id, refund_type="full", refund_reason="All", actor=admin_user)

        with pytest.raises(InvalidStateError):
            refund_service.refund(bill.id, refund_type="full", refund_reason="Again", actor=admin_user)
        with pytest.raises(InvalidStateError):
            refund_service.refund(
                bill.id,
                refund_type="partial",
                refund_reason="Again",
                items=[LineItemInput(part_id=part_a.id, quantity=1)],
                actor=admin_user,
            )
        assert db_session.query(Refund).count() == 1

    def test_bill_from_reservation(self, db_session, make_part, general_user, admin_user):
        part = make_part(total_stock=2, recommended_price_cents=3000)
        reservation = reservation_service.reserve(
            [LineItemInput(part_id=part.id, quantity=2)],
            customer_name="Jane",
            customer_phone="555",
            actor=general_user,
        )
        bill = reservation_service.complete(reservation.id, actor=general_user)

        refund_service.refund(bill.id, refund_type="full", refund_reason="Returned", actor=admin_user)

        assert _stock(db_session, part.id) == (2, 0, 2)


class TestRefundRules:

    def test_general_user_denied(self, db_session, sold, general_user):
        bill, _, _ = sold
        with pytest.raises(PermissionDeniedError):
            refund_service.refund(bill.id, refund_type="full", refund_reason="x", actor=general_user)

    def test_reason_required(self, db_session, sold, admin_user):
        bill, _, _ = sold
        with pytest.raises(ValidationError):
            refund_service.refund(bill.id, refund_type="full", refund_reason="  ", actor=admin_user)

    def test_invalid_type(self, db_session, sold, admin_user):
        bill, _, _ = sold
        with pytest.raises(ValidationError):
            refund_service.refund(bill.id, refund_type="store_credit", refund_reason="x", actor=admin_user)

    def test_duplicate_lines_rejected(self, db_session, sold, admin_user):
        bill, part_a, _ = sold
        with pytest.raises(ValidationError) as exc:
            refund_service.refund(
                bill.id,
                refund_type="partial",
                refund_reason="Twice",
                items=[
                    LineItemInput(part_id=part_a.id, quantity=1),
                    LineItemInput(part_id=part_a.id, quantity=1),
                ],
                actor=admin_user,
            )
        assert exc.value.details["part_id"] == part_a.id
        assert db_session.query(Refund).count() == 0


class TestZeroTotalBill:

    @pytest.fixture
    def free_bill(self, db_session, make_part, general_user):
        part = make_part(total_stock=3, recommended_price_cents=1000)
        bill = sales_service.sell(
            [LineItemInput(part_id=part.id, quantity=2, unit_price_cents=0)],
            customer_name="John",
            actor=general_user,
        )
        return bill, part

    def test_full_refund_marks_refunded(self, db_session, free_bill, admin_user):
        bill, part = free_bill

        record = refund_service.refund(bill.id, refund_type="full", refund_reason="Warranty", actor=admin_user)

        assert record.refund_amount_cents == 0
        assert [item.quantity for item in record.items] == [2]
        bill = _bill(db_session, bill.id)
        assert (bill.total_refunded_cents, bill.status) == (0, "refunded")
        assert sales_service.bill_status_is_consistent(bill)
        assert _stock(db_session, part.id) == (3, 0, 3)

        with pytest.raises(InvalidStateError):
            refund_service.refund(bill.id, refund_type="full", refund_reason="Again", actor=admin_user)

    def test_partial_units_back_is_partially_refunded(self, db_session, free_bill, admin_user):
        bill, part = free_bill

        refund_service.refund(
            bill.id,
            refund_type="partial",
            refund_reason="One back",
            items=[LineItemInput(part_id=part.id, quantity=1)],
            actor=admin_user,
        )
        assert _bill(db_session, bill.id).status == "partially_refunded"

        refund_service.refund(
            bill.id,
            refund_type="partial",
            refund_reason="Other back",
            items=[LineItemInput(part_id=part.id, quantity=1)],
            actor=admin_user,
        )
        bill = _bill(db_session, bill.id)
        assert bill.status == "refunded"
        assert sales_service.bill_status_is_consistent(bill)


class TestRefundHistory:

    def test_items_partitioned_by_refund(self, db_session, sold, admin_user):
        bill, part_a, part_b = sold
        first = refund_service.refund(
            bill.id,
            refund_type="partial",
            refund_reason="First",
            items=[LineItemInput(part_id=part_a.id, quantity=1)],
            actor=admin_user,
        )
        second = refund_service.refund(
            bill.id,
            refund_type="partial",
            refund_reason="Second",
            items=[
                LineItemInput(part_id=part_a.id, quantity=1),
                LineItemInput(part_id=part_b.id, quantity=1),
            ],
            actor=admin_user,
        )
        third = refund_service.refund(
            bill.id, refund_type="full", refund_reason="Third", actor=admin_user
        )

        history = refund_service.get_refund_history(bill.id)

        assert [entry["id"] for entry in history] == [first.id, second.id, third.id]
        by_id = {entry["id"]: entry for entry in history}
        assert [(i["part_id"], i["quantity"]) for i in by_id[first.id]["refund_items"]] == [
            (part_a.id, 1)
        ]
        assert sorted((i["part_id"], i["quantity"]) for i in by_id[second.id]["refund_items"]) == sorted([
            (part_a.id, 1), (part_b.id, 1)
        ])
        assert sorted((i["part_id"], i["quantity"]) for i in by_id[third.id]["refund_items"]) == sorted([
            (part_a.id, 1), (part_b.id, 1)
        ])
        for entry in history:
            assert all(item["refund_id"] == entry["id"] for item in entry["refund_items"])
            assert entry["refund_amount_cents"] == sum(
                item["total_price_cents"] for item in entry["refund_items"]
            )

    def test_status_consistent_after_each_refund(self, db_session, sold, admin_user):
        bill, part_a, part_b = sold
        steps = [
            dict(refund_type="partial", items=[LineItemInput(part_id=part_b.id, quantity=1)]),
            dict(refund_type="partial", items=[LineItemInput(part_id=part_a.id, quantity=3)]),
            dict(refund_type="full"),
        ]
        for step in steps:
            refund_service.refund(bill.id, refund_reason="step", actor=admin_user, **step)
            assert sales_service.bill_status_is_consistent(_bill(db_session, bill.id))

    def test_unknown_bill(self, db_session):
        from carparts.errors import NotFoundError

        with pytest.raises(NotFoundError):
            refund_service.get_refund_history(8080)
