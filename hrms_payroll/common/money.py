from decimal import Decimal, ROUND_HALF_UP, ROUND_CEILING, ROUND_FLOOR

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def D(x) -> Decimal:
    if x is None or x == "":
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def money(x) -> Decimal:
    """Round half-up to the cent."""
    return D(x).quantize(CENT, rounding=ROUND_HALF_UP)


def ringgit_up(x) -> Decimal:
    return D(x).quantize(Decimal("1"), rounding=ROUND_CEILING)


def nearest_5_sen(x) -> Decimal:
    return money((D(x) * 20).quantize(Decimal("1"), rounding=ROUND_HALF_UP) / 20)


def round_to_half(x) -> Decimal:
    return (D(x) * 2).quantize(Decimal("1"), rounding=ROUND_HALF_UP) / 2


def floor_to(x, step) -> Decimal:
    step = D(step)
    return (D(x) / step).quantize(Decimal("1"), rounding=ROUND_FLOOR) * step
