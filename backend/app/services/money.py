from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def ToMoney(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        result = Decimal(value.strip() or "0")
    else:
        raise TypeError(f"Unsupported amount type: {type(value)!r}")
    return result.quantize(CENT, rounding=ROUND_HALF_UP)


def RoundMoney(value: Decimal) -> Decimal:
    # Half away from zero for both signs.
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def PercentOf(amount, percent) -> Decimal:
    return RoundMoney(ToMoney(amount) * Decimal(str(percent)) / Decimal("100"))
