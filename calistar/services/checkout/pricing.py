"""Amount parsing, rounding and shipping quote rules."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from calistar.common.config import Settings
from calistar.common.errors import InvalidAmount

CENT = Decimal("0.01")


def parse_amount(value) -> Decimal:
    """Coerce a client-supplied amount to Decimal without float artifacts."""

    if value is None or isinstance(value, bool):
        raise InvalidAmount(detail=f"amount={value!r}")
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise InvalidAmount(detail=f"amount={value!r}") from exc
    if not amount.is_finite():
        raise InvalidAmount(detail=f"amount={value!r}")
    return amount


def round_amount(amount: Decimal) -> Decimal:
    """Round half-up to cents; idempotent on already rounded values."""

    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        # Too many digits for the decimal context.
        raise InvalidAmount(detail=f"amount={amount}") from exc


def to_cents(amount: Decimal) -> int:
    return int(round_amount(amount) * 100)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


@dataclass(frozen=True)
class Quote:
    subtotal: Decimal
    shipping: Decimal
    total: Decimal
    free_shipping: bool
    remaining_for_free_shipping: Decimal


def quote(subtotal, settings: Settings) -> Quote:
    """Shipping is free from the configured threshold up, flat rate below it."""

    subtotal = round_amount(parse_amount(subtotal))
    if subtotal < 0:
        raise InvalidAmount("Subtotal inválido", detail=f"subtotal={subtotal}")
    free = subtotal >= settings.free_shipping_threshold
    shipping = Decimal("0.00") if free else round_amount(settings.shipping_flat_rate)
    remaining = max(Decimal("0.00"), round_amount(settings.free_shipping_threshold - subtotal))
    return Quote(
        subtotal=subtotal,
        shipping=shipping,
        total=subtotal + shipping,
        free_shipping=free,
        remaining_for_free_shipping=remaining,
    )
