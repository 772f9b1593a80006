"""
Sales service tests.

Verifies:
- A multi-line sale writes one bill and moves every line available -> sold
- A short line rejects the whole sale and persists nothing
- Bill numbers are generated when omitted and must be unique
- Bill metadata edits are admin-only and never touch amounts
"""

import pytest

from carparts.errors import (
    ConflictError,
    InsufficientStockError,
    PartNotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from carparts.models import Bill, BillItem, Part, StockMovement
from carparts.services import sales_service, stock_ledger
from carparts.validation import LineItemInput


def _part(db_session, part_id):
    db_session.expire_all()
    return db_session.get(Part, part_id)


class TestSell:

    def test_multi_line_sale(self, db_session, make_part, general_user):
        brake = make_part(name="Brake pad", total_stock=4, recommended_price_cents=2500)
        filt = make_part(name="Oil filter", total_stock=10, recommended_price_cents=800)

        bill = sales_service.sell(
            [
                LineItemInput(part_id=brake.id, quantity=2),
                LineItemInput(part_id=filt.id, quantity=3, unit_price_cents=700),
            ],
            customer_name="  John  ",
            customer_phone="555-0100",
            actor=general_user,
        )

        db_session.expire_all()
        bill = db_session.get(Bill, bill.id)
        assert bill.customer_name == "John"
        assert bill.total_amount_cents == 2 * 2500 + 3 * 700
        assert bill.total_quantity == 5
        assert bill.status == "active"
        assert bill.created_by == general_user.id
        assert bill.bill_number == sales_service.format_bill_number(bill.id)
        assert sorted((i.part_id, i.quantity, i.unit_price_cents) for i in bill.items) == sorted([
            (brake.id, 2, 2500),
            (filt.id, 3, 700),
        ])
        assert bill.items[0].part_name in ("Brake pad", "Oil filter")

        brake = _part(db_session, brake.id)
        assert (brake.available_stock, brake.sold_stock, brake.total_stock) == (2, 2, 4)
        filt = _part(db_session, filt.id)
        assert (filt.available_stock, filt.sold_stock, filt.total_stock) == (7, 3, 10)

        movements = stock_ledger.list_movements(
            reference_type=stock_ledger.REFERENCE_BILL, reference_id=bill.id
        )
        assert len(movements) == 2
        assert {m.movement_type for m in movements} == {stock_ledger.MOVEMENT_SALE}

    def test_short_line_rejects_whole_sale(self, db_session, make_part, general_user):
        plenty = make_part(total_stock=10)
        scarce = make_part(total_stock=1)
        movements_before = db_session.query(StockMovement).count()

        with pytest.raises(InsufficientStockError) as exc:
            sales_service.sell(
                [
                    LineItemInput(part_id=plenty.id, quantity=2),
                    LineItemInput(part_id=scarce.id, quantity=3),
                ],
                customer_name="Jane",
                actor=general_user,
            )

        assert exc.value.details["items"] == [{
            "part_id": scarce.id,
            "requested_quantity": 3,
            "available_stock": 1,
        }]
        assert db_session.query(Bill).count() == 0
        assert db_session.query(BillItem).count() == 0
        assert db_session.query(StockMovement).count() == movements_before
        assert _part(db_session, plenty.id).available_stock == 10
        assert _part(db_session, scarce.id).available_stock == 1

    def test_unknown_part(self, db_session, general_user):
        with pytest.raises(PartNotFoundError):
            sales_service.sell(
                [LineItemInput(part_id=31337, quantity=1, unit_price_cents=100)],
                customer_name="Jane",
                actor=general_user,
            )

    def test_duplicate_lines_rejected(self, db_session, make_part, general_user):
        part = make_part(total_stock=5)
        with pytest.raises(ValidationError) as exc:
            sales_service.sell(
                [
                    LineItemInput(part_id=part.id, quantity=1),
                    LineItemInput(part_id=part.id, quantity=2),
                ],
                customer_name="Jane",
                actor=general_user,
            )
        assert exc.value.details["part_id"] == part.id
        assert db_session.query(Bill).count() == 0
        assert _part(db_session, part.id).available_stock == 5

    def test_customer_name_required(self, db_session, make_part, general_user):
        part = make_part()
        with pytest.raises(ValidationError):
            sales_service.sell(
                [LineItemInput(part_id=part.id, quantity=1)],
                customer_name="   ",
                actor=general_user,
            )

    def test_price_required_without_recommended_price(self, db_session, make_part, general_user):
        part = make_part(recommended_price_cents=None)
        with pytest.raises(ValidationError):
            sales_service.sell(
                [LineItemInput(part_id=part.id, quantity=1)],
                customer_name="Jane",
                actor=general_user,
            )
        assert _part(db_session, part.id).available_stock == 5

    def test_explicit_bill_number_must_be_unique(self, db_session, make_part, general_user):
        part = make_part(total_stock=5)
        sales_service.sell(
            [LineItemInput(part_id=part.id, quantity=1)],
            customer_name="Jane",
            bill_number="INV-1",
            actor=general_user,
        )

        with pytest.raises(ConflictError):
            sales_service.sell(
                [LineItemInput(part_id=part.id, quantity=1)],
                customer_name="Joe",
                bill_number="INV-1",
                actor=general_user,
            )
        assert _part(db_session, part.id).available_stock == 4

    def test_sale_writes_audit_entry(self, db_session, make_part, general_user):
        from carparts.services import audit_service

        part = make_part()
        bill = sales_service.sell(
            [LineItemInput(part_id=part.id, quantity=1)],
            customer_name="Jane",
            actor=general_user,
        )

        logs, total = audit_service.list_audit_logs(action=audit_service.ACTION_SELL)
        assert total == 1
        assert logs[0].record_id == bill.id
        assert logs[0].table_name == "bills"
        assert logs[0].username == general_user.username


class TestQuickSell:

    def test_sells_one_unit_to_walk_in(self, app, db_session, make_part, general_user):
        part = make_part(total_stock=2, recommended_price_cents=1500)

        part, bill = sales_service.quick_sell(part.id, actor=general_user)

        assert bill.customer_name == app.config["DEFAULT_WALK_IN_CUSTOMER"]
        assert bill.total_amount_cents == 1500
        assert bill.total_quantity == 1
        assert (part.available_stock, part.sold_stock) == (1, 1)

    def test_price_override(self, db_session, make_part, general_user):
        part = make_part(total_stock=1, recommended_price_cents=1500)
        _, bill = sales_service.quick_sell(part.id, sold_price_cents=1200, actor=general_user)
        assert bill.total_amount_cents == 1200

    def test_sold_out_part(self, db_session, make_part, general_user):
        part = make_part(total_stock=1)
        sales_service.quick_sell(part.id, actor=general_user)
        with pytest.raises(InsufficientStockError):
            sales_service.quick_sell(part.id, actor=general_user)


class TestBillMetadata:

    def _bill(self, make_part, actor):
        part = make_part(total_stock=3)
        return sales_service.sell(
            [LineItemInput(part_id=part.id, quantity=1)],
            customer_name="Jane",
            actor=actor,
        )

    def test_admin_updates_customer(self, db_session, make_part, admin_user):
        bill = self._bill(make_part, admin_user)
        amount = bill.total_amount_cents

        updated = sales_service.update_bill_metadata(
            bill.id,
            {"customer_name": "Jane Doe", "customer_phone": "555-0199"},
            actor=admin_user,
        )

        assert updated.customer_name == "Jane Doe"
        assert updated.customer_phone == "555-0199"
        assert updated.total_amount_cents == amount

    def test_general_user_denied(self, db_session, make_part, general_user):
        bill = self._bill(make_part, general_user)
        with pytest.raises(PermissionDeniedError):
            sales_service.update_bill_metadata(
                bill.id, {"customer_name": "X"}, actor=general_user
            )

    def test_amount_fields_are_not_writable(self, db_session, make_part, admin_user):
        bill = self._bill(make_part, admin_user)
        with pytest.raises(ValidationError):
            sales_service.update_bill_metadata(
                bill.id, {"total_amount_cents": 1}, actor=admin_user
            )

    def test_blank_bill_number_regenerates(self, db_session, make_part, admin_user):
        bill = self._bill(make_part, admin_user)
        sales_service.update_bill_metadata(bill.id, {"bill_number": "CUSTOM-7"}, actor=admin_user)
        updated = sales_service.update_bill_metadata(bill.id, {"bill_number": ""}, actor=admin_user)
        assert updated.bill_number == sales_service.format_bill_number(bill.id)


class TestBillQueries:

    def test_search_and_status_filter(self, db_session, make_part, general_user):
        part = make_part(total_stock=5)
        for name in ("Alice", "Bob", "Alicia"):
            sales_service.sell(
                [LineItemInput(part_id=part.id, quantity=1)],
                customer_name=name,
                actor=general_user,
            )

        bills, pagination = sales_service.list_bills(search="ali")
        assert pagination is None
        assert sorted(b.customer_name for b in bills) == ["Alice", "Alicia"]

        bills, pagination = sales_service.list_bills(status="active", page=1, per_page=2)
        assert len(bills) == 2
        assert pagination["total"] == 3
        assert pagination["total_pages"] == 2
        assert pagination["has_next"] is True

    def test_get_bill_not_found(self, db_session):
        from carparts.errors import NotFoundError

        with pytest.raises(NotFoundError):
            sales_service.get_bill(5555)
