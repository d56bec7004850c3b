"""Pure pricing rules: line totals, delivery fee, minimum order, zone fees.

Nothing here performs I/O. ``PricingEngine`` turns locked unit prices
and the merchant's fee settings into a ``Quote``; a quote below the
merchant's minimum is reported through ``Quote.meets_minimum`` and left
to the caller to reject. ``DeliveryFeeCalculator`` is the postal-zone
heuristic behind the standalone delivery-fee quote.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence, Tuple

from .domain import DeliveryMethod

CENT = Decimal("0.01")
ZERO = Decimal("0.00")

MINIMUM_ORDER_BASES = ("subtotal", "total")


def money(value) -> Decimal:
    """Round a number to currency precision (half-up, two places)."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Quote:
    """Priced totals for a cart.

    Invariant: ``total == subtotal + delivery_fee - discount + tax``.
    """

    subtotal: Decimal
    delivery_fee: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal
    minimum_order: Decimal
    meets_minimum: bool

    @property
    def minimum_order_message(self) -> str:
        return f"Minimum order amount is ${self.minimum_order:.2f}"


class PricingEngine:
    """Flat pricing: line totals, the merchant's flat delivery fee and a minimum.

    Args:
        minimum_order_base: Which amount the minimum is compared against,
            ``"subtotal"`` (default) or ``"total"`` (delivery fee included).
    """

    def __init__(self, minimum_order_base: str = "subtotal"):
        if minimum_order_base not in MINIMUM_ORDER_BASES:
            raise ValueError(f"Unknown minimum order base: {minimum_order_base}")
        self.minimum_order_base = minimum_order_base

    @staticmethod
    def line_total(unit_price, quantity: int) -> Decimal:
        return money(money(unit_price) * quantity)

    @staticmethod
    def delivery_fee(delivery_method: Optional[DeliveryMethod], flat_fee) -> Decimal:
        """The merchant's flat fee for DELIVERY, zero otherwise (including undecided)."""
        if delivery_method == DeliveryMethod.DELIVERY:
            return money(flat_fee or 0)
        return ZERO

    def quote(
        self,
        lines: Iterable[Tuple[Decimal, int]],
        delivery_method: Optional[DeliveryMethod],
        flat_delivery_fee,
        minimum_order=0,
    ) -> Quote:
        """Price a cart.

        Args:
            lines: ``(unit_price, quantity)`` pairs.
            delivery_method: Selected method, or None while deferred.
            flat_delivery_fee: Merchant's flat delivery fee.
            minimum_order: Merchant's minimum; zero disables the check.

        Returns:
            Quote: Totals plus the minimum-order verdict.
        """
        subtotal = money(sum((self.line_total(p, q) for p, q in lines), ZERO))
        fee = self.delivery_fee(delivery_method, flat_delivery_fee)
        discount = ZERO
        tax = ZERO
        total = money(subtotal + fee - discount + tax)

        minimum = money(minimum_order or 0)
        compared = subtotal if self.minimum_order_base == "subtotal" else total
        meets = minimum <= 0 or compared >= minimum
        return Quote(
            subtotal=subtotal,
            delivery_fee=fee,
            discount=discount,
            tax=tax,
            total=total,
            minimum_order=minimum,
            meets_minimum=meets,
        )


# ---------------- Delivery fee heuristic ---------------- #

DEFAULT_SURCHARGE_TIERS: Tuple[Tuple[int, int], ...] = ((10, 3), (5, 2), (2, 1))


@dataclass(frozen=True)
class FeeQuote:
    fee: Decimal
    estimated_minutes: int
    zone_difference: int


def parse_surcharge_tiers(raw: str) -> Tuple[Tuple[int, int], ...]:
    """Parse ``"10:3,5:2,2:1"`` into ``((10, 3), (5, 2), (2, 1))``.

    Tiers are returned sorted by threshold, highest first.
    """
    tiers = []
    for chunk in raw.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        threshold, surcharge = chunk.split(":")
        tiers.append((int(threshold), int(surcharge)))
    return tuple(sorted(tiers, reverse=True))


class DeliveryFeeCalculator:
    """Zone heuristic on the first two digits of the postal codes.

    The zone difference is ``abs(merchant_zone - customer_zone)``. The
    first tier whose threshold the difference strictly exceeds (checked
    from the highest threshold down) adds its surcharge to the base fee;
    with the default tiers that is +3 above 10, +2 above 5 and +1 above 2.
    The estimate is ``base_minutes + minutes_per_zone * difference``.
    A missing or malformed merchant postal code counts as zone 00.
    """

    def __init__(
        self,
        tiers: Sequence[Tuple[int, int]] = DEFAULT_SURCHARGE_TIERS,
        base_minutes: int = 30,
        minutes_per_zone: int = 2,
    ):
        self.tiers = tuple(sorted(tiers, reverse=True))
        self.base_minutes = base_minutes
        self.minutes_per_zone = minutes_per_zone

    @staticmethod
    def zone(postal_code: Optional[str]) -> int:
        prefix = (postal_code or "")[:2]
        return int(prefix) if len(prefix) == 2 and prefix.isdigit() else 0

    def surcharge(self, zone_difference: int) -> int:
        for threshold, amount in self.tiers:
            if zone_difference > threshold:
                return amount
        return 0

    def quote(self, base_fee, merchant_postal_code: Optional[str], customer_postal_code: str) -> FeeQuote:
        diff = abs(self.zone(merchant_postal_code) - self.zone(customer_postal_code))
        fee = money(money(base_fee or 0) + self.surcharge(diff))
        return FeeQuote(
            fee=fee,
            estimated_minutes=self.base_minutes + self.minutes_per_zone * diff,
            zone_difference=diff,
        )
