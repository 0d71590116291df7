"""
Unit tests for payload parsing (ops_kernel/domain/dtos.py).

Every check here happens before the database is touched, so a bad
payload can never leave partial state behind.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from ops_kernel.domain.dtos import (
    BatchDraft,
    InventoryDecrement,
    InvoiceTerms,
    OrderDraft,
    parse_date,
    parse_datetime,
    parse_decrements,
    parse_uuid,
)
from ops_kernel.exceptions import ValidationError
from ops_kernel.models.order import OrderStatus
from ops_kernel.models.production import BatchStatus, QualityGrade


class TestOrderDraft:
    """order_data validation."""

    def test_minimal_payload(self):
        draft = OrderDraft.from_mapping({"customer_id": "C1", "total_amount": "1000.00"})
        assert draft.customer_id == "C1"
        assert draft.total_amount == Decimal("1000.00")
        assert draft.status == OrderStatus.PENDING
        assert draft.order_number is None
        assert draft.idempotency_key is None

    def test_total_is_rounded(self):
        draft = OrderDraft.from_mapping({"customer_id": "C1", "total_amount": "10.005"})
        assert draft.total_amount == Decimal("10.00")

    def test_missing_customer(self):
        with pytest.raises(ValidationError) as exc_info:
            OrderDraft.from_mapping({"total_amount": "10"})
        assert exc_info.value.field == "customer_id"

    def test_blank_customer(self):
        with pytest.raises(ValidationError, match="customer_id is required"):
            OrderDraft.from_mapping({"customer_id": "   ", "total_amount": "10"})

    def test_missing_total(self):
        with pytest.raises(ValidationError, match="total_amount is required"):
            OrderDraft.from_mapping({"customer_id": "C1"})

    @pytest.mark.parametrize("total", ["0", "-5", "0.001"])
    def test_non_positive_total(self, total):
        """0.001 rounds to 0.00 and is rejected too."""
        with pytest.raises(ValidationError, match="greater than zero"):
            OrderDraft.from_mapping({"customer_id": "C1", "total_amount": total})

    def test_not_a_mapping(self):
        with pytest.raises(ValidationError, match="order_data must be an object"):
            OrderDraft.from_mapping(["C1", 10])

    def test_none_payload(self):
        with pytest.raises(ValidationError, match="order_data is required"):
            OrderDraft.from_mapping(None)

    def test_unknown_status(self):
        with pytest.raises(ValidationError) as exc_info:
            OrderDraft.from_mapping({"customer_id": "C1", "total_amount": "1", "status": "shipped"})
        assert exc_info.value.field == "status"
        assert "pending" in exc_info.value.reason

    def test_order_date_parsed_as_utc(self):
        draft = OrderDraft.from_mapping(
            {"customer_id": "C1", "total_amount": "1", "order_date": "2026-03-01T10:00:00"}
        )
        assert draft.order_date == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_optional_fields(self):
        draft = OrderDraft.from_mapping({
            "customer_id": "C1",
            "total_amount": 250,
            "order_number": " ORD-X ",
            "status": "confirmed",
            "notes": "rush",
            "idempotency_key": "req-1",
        })
        assert draft.order_number == "ORD-X"
        assert draft.status == OrderStatus.CONFIRMED
        assert draft.notes == "rush"
        assert draft.idempotency_key == "req-1"

    def test_overlong_order_number(self):
        with pytest.raises(ValidationError, match="at most 50"):
            OrderDraft.from_mapping(
                {"customer_id": "C1", "total_amount": "1", "order_number": "X" * 51}
            )


class TestInvoiceTerms:
    """invoice_data validation."""

    def test_none_gives_defaults(self):
        assert InvoiceTerms.from_mapping(None) == InvoiceTerms()

    def test_terms_and_matching_due_date(self):
        terms = InvoiceTerms.from_mapping(
            {"issue_date": "2026-01-15", "payment_terms": 30, "due_date": "2026-02-14"}
        )
        assert terms.payment_terms == 30
        assert terms.due_date == date(2026, 2, 14)

    def test_terms_and_due_date_disagree(self):
        with pytest.raises(ValidationError, match="does not match"):
            InvoiceTerms.from_mapping(
                {"issue_date": "2026-01-15", "payment_terms": 30, "due_date": "2026-02-20"}
            )

    def test_due_before_issue(self):
        with pytest.raises(ValidationError, match="must not be before issue_date"):
            InvoiceTerms.from_mapping({"issue_date": "2026-01-15", "due_date": "2026-01-01"})

    @pytest.mark.parametrize("terms", [-1, "30", 1.5, True])
    def test_bad_payment_terms(self, terms):
        with pytest.raises(ValidationError) as exc_info:
            InvoiceTerms.from_mapping({"payment_terms": terms})
        assert exc_info.value.field == "payment_terms"

    def test_bad_date(self):
        with pytest.raises(ValidationError, match="issue_date"):
            InvoiceTerms.from_mapping({"issue_date": "next tuesday"})


class TestBatchDraft:
    """batch_data validation."""

    def test_defaults(self):
        draft = BatchDraft.from_mapping({"batch_number": "B-1"})
        assert draft.output_litres == Decimal("0")
        assert draft.quality_grade == QualityGrade.A
        assert draft.status == BatchStatus.ACTIVE

    def test_int_batch_number_accepted(self):
        assert BatchDraft.from_mapping({"batch_number": 42}).batch_number == "42"

    def test_missing_batch_number(self):
        with pytest.raises(ValidationError, match="batch_number is required"):
            BatchDraft.from_mapping({"output_litres": "10"})

    def test_negative_output(self):
        with pytest.raises(ValidationError, match="output_litres must not be negative"):
            BatchDraft.from_mapping({"batch_number": "B-1", "output_litres": "-1"})

    def test_bad_grade(self):
        with pytest.raises(ValidationError) as exc_info:
            BatchDraft.from_mapping({"batch_number": "B-1", "quality_grade": "Z"})
        assert exc_info.value.field == "quality_grade"


class TestDecrements:
    """inventory_decrements validation."""

    def test_single_line(self):
        lot_id = uuid4()
        lines = parse_decrements([{"material_intake_id": str(lot_id), "quantity_used": "60"}])
        assert lines == (InventoryDecrement(lot_id, Decimal("60")),)

    def test_empty_list(self):
        with pytest.raises(ValidationError, match="at least one line"):
            parse_decrements([])

    @pytest.mark.parametrize("value", [None, "lot", {"material_intake_id": "x"}])
    def test_not_a_list(self, value):
        with pytest.raises(ValidationError, match="must be a list"):
            parse_decrements(value)

    def test_error_names_line_index(self):
        lines = [
            {"material_intake_id": str(uuid4()), "quantity_used": "1"},
            {"material_intake_id": str(uuid4()), "quantity_used": "0"},
        ]
        with pytest.raises(ValidationError) as exc_info:
            parse_decrements(lines)
        assert exc_info.value.field == "inventory_decrements[1].quantity_used"

    def test_bad_lot_id(self):
        with pytest.raises(ValidationError) as exc_info:
            InventoryDecrement.from_mapping({"material_intake_id": "nope", "quantity_used": 1}, 0)
        assert exc_info.value.field == "inventory_decrements[0].material_intake_id"

    def test_missing_quantity(self):
        with pytest.raises(ValidationError, match="quantity_used is required"):
            InventoryDecrement.from_mapping({"material_intake_id": str(uuid4())}, 3)

    def test_quantity_below_column_scale(self):
        """Would store as 0.000000000 and subtract nothing."""
        with pytest.raises(ValidationError, match="more than 9 decimal places") as exc_info:
            InventoryDecrement.from_mapping(
                {"material_intake_id": str(uuid4()), "quantity_used": "0.0000000001"}, 0
            )
        assert exc_info.value.field == "inventory_decrements[0].quantity_used"


class TestParsers:
    """Scalar parsers."""

    def test_parse_datetime_from_date(self):
        assert parse_datetime(date(2026, 1, 2), "d") == datetime(2026, 1, 2, tzinfo=timezone.utc)

    def test_parse_datetime_keeps_offset(self):
        value = parse_datetime("2026-01-02T10:00:00+02:00", "d")
        assert value.utcoffset().total_seconds() == 7200

    def test_parse_date_from_iso_datetime_string(self):
        assert parse_date("2026-01-02T23:59:00Z", "d") == date(2026, 1, 2)

    def test_parse_uuid(self):
        uid = uuid4()
        assert parse_uuid(str(uid), "id") == uid
        assert parse_uuid(uid, "id") is uid

    def test_parse_uuid_none(self):
        with pytest.raises(ValidationError, match="id is required"):
            parse_uuid(None, "id")
