# bytsave/models/money.py

"""Decimal helpers for cent-precise price handling."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

CENT = Decimal("0.01")


def to_money(value: Decimal | float | int | str) -> Decimal:
    """Convert *value* to a Decimal rounded half-up to cents.

    Floats go through ``str()`` first so ``19.99`` stays ``19.99``
    instead of picking up binary noise.
    """
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a price: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a price: {value!r}")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def optional_money(
    value: Decimal | float | int | str | None,
) -> Decimal | None:
    """Like :func:`to_money` but passes ``None`` (and blanks) through."""
    if value is None or value == "":
        return None
    return to_money(value)
