"""
Inbound payload DTOs for the composite writes.

Responsibility:
    Turn the loosely typed dicts sent by order and production forms into
    frozen, fully validated dataclasses.  Every check that can be made
    without the database happens here, so a ValidationError is always
    raised before the first write.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Failure modes:
    - ValidationError naming the offending field, e.g.
      ``inventory_decrements[2].quantity_used must be greater than zero``.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from ops_kernel.db.types import COLUMN_SCALE, ZERO, round_money, to_decimal
from ops_kernel.exceptions import ValidationError
from ops_kernel.models.order import OrderStatus
from ops_kernel.models.production import BatchStatus, QualityGrade


def _optional_str(data: Mapping[str, Any], key: str, max_length: int) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(key, "must be a string")
    value = value.strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(key, f"must be at most {max_length} characters")
    return value


def _required_str(data: Mapping[str, Any], key: str, max_length: int) -> str:
    value = data.get(key)
    if isinstance(value, (int, UUID)) and not isinstance(value, bool):
        value = str(value)
    result = _optional_str({key: value}, key, max_length)
    if result is None:
        raise ValidationError(key, "is required")
    return result


def parse_datetime(value: Any, field: str) -> datetime | None:
    """Accept datetime, date or ISO-8601 string; naive values are taken as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        result = value
    elif isinstance(value, date):
        result = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            result = datetime.fromisoformat(value.strip())
        except ValueError:
            raise ValidationError(field, f"is not an ISO-8601 date/time: {value!r}") from None
    else:
        raise ValidationError(field, "must be a date/time")
    if result.tzinfo is None:
        result = result.replace(tzinfo=timezone.utc)
    return result


def parse_date(value: Any, field: str) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError:
            raise ValidationError(field, f"is not an ISO-8601 date: {value!r}") from None
    raise ValidationError(field, "must be a date")


def parse_uuid(value: Any, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    if isinstance(value, str):
        try:
            return UUID(value.strip())
        except ValueError:
            raise ValidationError(field, f"is not a valid id: {value!r}") from None
    if value is None:
        raise ValidationError(field, "is required")
    raise ValidationError(field, "is not a valid id")


def _parse_enum(enum_cls, value: Any, field: str, default):
    if value is None:
        return default
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(field, f"must be one of: {allowed}") from None


def _require_mapping(data: Any, field: str) -> Mapping[str, Any]:
    if data is None:
        raise ValidationError(field, "is required")
    if not isinstance(data, Mapping):
        raise ValidationError(field, "must be an object")
    return data


# =============================================================================
# Orders
# =============================================================================


@dataclass(frozen=True)
class OrderDraft:
    """Validated order_data payload."""

    customer_id: str
    total_amount: Decimal
    order_date: datetime | None = None
    order_number: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    notes: str | None = None
    idempotency_key: str | None = None

    @classmethod
    def from_mapping(cls, data: Any, decimal_places: int = 2) -> "OrderDraft":
        data = _require_mapping(data, "order_data")
        customer_id = _required_str(data, "customer_id", 100)

        if data.get("total_amount") is None:
            raise ValidationError("total_amount", "is required")
        total = round_money(
            to_decimal(data["total_amount"], "total_amount"), decimal_places, field="total_amount"
        )
        if total <= ZERO:
            raise ValidationError("total_amount", "must be greater than zero")

        return cls(
            customer_id=customer_id,
            total_amount=total,
            order_date=parse_datetime(data.get("order_date"), "order_date"),
            order_number=_optional_str(data, "order_number", 50),
            status=_parse_enum(OrderStatus, data.get("status"), "status", OrderStatus.PENDING),
            notes=_optional_str(data, "notes", 4000),
            idempotency_key=_optional_str(data, "idempotency_key", 255),
        )


@dataclass(frozen=True)
class InvoiceTerms:
    """
    Validated invoice_data payload.  Every field is optional.

    When both payment_terms and due_date are given they must agree.
    """

    issue_date: date | None = None
    payment_terms: int | None = None
    due_date: date | None = None
    notes: str | None = None

    @classmethod
    def from_mapping(cls, data: Any) -> "InvoiceTerms":
        if data is None:
            return cls()
        data = _require_mapping(data, "invoice_data")

        terms = data.get("payment_terms")
        if terms is not None:
            if isinstance(terms, bool) or not isinstance(terms, int):
                raise ValidationError("payment_terms", "must be a whole number of days")
            if terms < 0:
                raise ValidationError("payment_terms", "must not be negative")

        issue_date = parse_date(data.get("issue_date"), "issue_date")
        due_date = parse_date(data.get("due_date"), "due_date")
        if issue_date is not None and due_date is not None:
            if due_date < issue_date:
                raise ValidationError("due_date", "must not be before issue_date")
            if terms is not None and (due_date - issue_date).days != terms:
                raise ValidationError("due_date", "does not match issue_date + payment_terms")

        return cls(
            issue_date=issue_date,
            payment_terms=terms,
            due_date=due_date,
            notes=_optional_str(data, "notes", 4000),
        )


# =============================================================================
# Production
# =============================================================================


@dataclass(frozen=True)
class BatchDraft:
    """Validated batch_data payload."""

    batch_number: str
    production_date: datetime | None = None
    output_litres: Decimal = ZERO
    quality_grade: QualityGrade = QualityGrade.A
    status: BatchStatus = BatchStatus.ACTIVE
    notes: str | None = None

    @classmethod
    def from_mapping(cls, data: Any) -> "BatchDraft":
        data = _require_mapping(data, "batch_data")
        batch_number = _required_str(data, "batch_number", 100)

        output = data.get("output_litres")
        output_litres = (
            ZERO if output is None else to_decimal(output, "output_litres", COLUMN_SCALE)
        )
        if output_litres < ZERO:
            raise ValidationError("output_litres", "must not be negative")

        return cls(
            batch_number=batch_number,
            production_date=parse_datetime(data.get("production_date"), "production_date"),
            output_litres=output_litres,
            quality_grade=_parse_enum(
                QualityGrade, data.get("quality_grade"), "quality_grade", QualityGrade.A
            ),
            status=_parse_enum(BatchStatus, data.get("status"), "status", BatchStatus.ACTIVE),
            notes=_optional_str(data, "notes", 4000),
        )


@dataclass(frozen=True)
class InventoryDecrement:
    """One consumption line: take quantity_used from one lot."""

    material_intake_id: UUID
    quantity_used: Decimal

    @classmethod
    def from_mapping(cls, data: Any, index: int) -> "InventoryDecrement":
        prefix = f"inventory_decrements[{index}]"
        data = _require_mapping(data, prefix)
        lot_id = parse_uuid(data.get("material_intake_id"), f"{prefix}.material_intake_id")
        if data.get("quantity_used") is None:
            raise ValidationError(f"{prefix}.quantity_used", "is required")
        # More places than the column keeps would be stored as a smaller quantity
        quantity = to_decimal(data["quantity_used"], f"{prefix}.quantity_used", COLUMN_SCALE)
        if quantity <= ZERO:
            raise ValidationError(f"{prefix}.quantity_used", "must be greater than zero")
        return cls(material_intake_id=lot_id, quantity_used=quantity)


def parse_decrements(lines: Any) -> tuple[InventoryDecrement, ...]:
    """Validate the whole decrement list; raises on the first bad line."""
    if lines is None or isinstance(lines, (str, bytes, Mapping)) or not isinstance(lines, Sequence):
        raise ValidationError("inventory_decrements", "must be a list")
    if not lines:
        raise ValidationError("inventory_decrements", "must contain at least one line")
    return tuple(InventoryDecrement.from_mapping(line, i) for i, line in enumerate(lines))
