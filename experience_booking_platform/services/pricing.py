"""
Pricing calculator for booking line items.

All amounts are Decimal values quantized to cents. Unit prices are taken
once, when the line is first priced, and every later quantity change reuses
the stored unit price instead of the live catalog price.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, List, Optional, Sequence, Tuple, Any
from uuid import UUID

from ..models.booking_item import BookingItemType
from ..utils.exceptions import ValidationError

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Convert a numeric value to a Decimal rounded to cents."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(f"Invalid monetary amount: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Invalid monetary amount: {value!r}")
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricedLine:
    """One priced line: the session ticket or a single add-on."""

    item_type: BookingItemType
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    add_on_id: Optional[UUID] = None


@dataclass(frozen=True)
class PricedBooking:
    """Priced lines of a booking and their aggregate total."""

    quantity: int
    lines: List[PricedLine] = field(default_factory=list)
    total: Decimal = Decimal("0.00")

    @property
    def session_line(self) -> PricedLine:
        return next(line for line in self.lines if line.item_type == BookingItemType.SESSION)

    @property
    def add_on_lines(self) -> List[PricedLine]:
        return [line for line in self.lines if line.item_type == BookingItemType.ADD_ON]


def _validate_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(
            "Quantity must be a positive integer",
            field_errors={"quantity": ["must be a positive integer"]}
        )


def _validate_unit_price(unit_price: Any, field_name: str) -> Decimal:
    price = to_money(unit_price)
    if price < 0:
        raise ValidationError(
            "Prices cannot be negative",
            field_errors={field_name: ["must not be negative"]}
        )
    return price


def price_line(
    item_type: BookingItemType,
    unit_price: Any,
    quantity: int,
    add_on_id: Optional[UUID] = None
) -> PricedLine:
    """Price a single line as unit_price * quantity."""
    _validate_quantity(quantity)
    price = _validate_unit_price(unit_price, "unit_price")
    return PricedLine(
        item_type=item_type,
        quantity=quantity,
        unit_price=price,
        total_price=to_money(price * quantity),
        add_on_id=add_on_id,
    )


def booking_total(lines: Iterable[Any]) -> Decimal:
    """Sum the total_price of the given lines."""
    return to_money(sum((to_money(line.total_price) for line in lines), Decimal("0.00")))


def price_booking(
    base_price: Any,
    quantity: int,
    add_ons: Sequence[Tuple[UUID, Any]] = ()
) -> PricedBooking:
    """
    Price a new booking.

    Args:
        base_price: Effective base price of the session
        quantity: Ticket count, mirrored into every line
        add_ons: (add_on_id, unit_price) pairs captured at selection time

    Returns:
        PricedBooking with one SESSION line followed by one ADD_ON line per add-on
    """
    _validate_quantity(quantity)
    _validate_unit_price(base_price, "base_price")

    lines = [price_line(BookingItemType.SESSION, base_price, quantity)]
    for add_on_id, unit_price in add_ons:
        lines.append(price_line(BookingItemType.ADD_ON, unit_price, quantity, add_on_id=add_on_id))

    return PricedBooking(quantity=quantity, lines=lines, total=booking_total(lines))


def reprice_for_quantity(lines: Iterable[Any], new_quantity: int) -> PricedBooking:
    """
    Rescale existing lines to a new quantity using their stored unit prices.

    Accepts PricedLine values or BookingItem rows.
    """
    _validate_quantity(new_quantity)

    repriced = [
        price_line(line.item_type, line.unit_price, new_quantity, add_on_id=line.add_on_id)
        for line in lines
    ]
    return PricedBooking(quantity=new_quantity, lines=repriced, total=booking_total(repriced))
