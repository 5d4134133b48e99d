# bytsave/models/snapshot.py

"""Point-in-time product price snapshot."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal

from bytsave.models.money import optional_money, to_money


@dataclass(frozen=True)
class ProductSnapshot:
    """A single read of a tracked product's price and metadata.

    ``highest_price`` is the highest price ever recorded for the
    product, kept by the repository across fetches.  A fresh catalog
    read does not know it and leaves it ``None``.
    """

    identifier: str
    current_price: Decimal
    original_price: Decimal | None = None
    title: str = ""
    url: str = ""
    image_url: str = ""
    currency: str = "USD"
    fetched_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    highest_price: Decimal | None = None

    def __post_init__(self) -> None:
        current = to_money(self.current_price)
        original = optional_money(self.original_price)
        highest = optional_money(self.highest_price)
        if current <= 0:
            raise ValueError(
                f"current_price must be positive, got {current}"
            )
        if original is not None:
            if original <= 0:
                raise ValueError(
                    f"original_price must be positive, got {original}"
                )
            if original < current:
                raise ValueError(
                    f"original_price {original} is below "
                    f"current_price {current}"
                )
        if highest is not None and highest < current:
            raise ValueError(
                f"highest_price {highest} is below current_price {current}"
            )
        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "current_price", current)
        object.__setattr__(self, "original_price", original)
        object.__setattr__(self, "highest_price", highest)

    @property
    def baseline_price(self) -> Decimal:
        """Best-known "was" price for discount calculations.

        The list price when the page shows one, else the highest price
        seen so far, else the current price.
        """
        if self.original_price is not None:
            return self.original_price
        if self.highest_price is not None:
            return self.highest_price
        return self.current_price
