from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, Decimal

_ROUNDING_MODES = {
    "round": ROUND_HALF_UP,
    "ceil": ROUND_CEILING,
    "floor": ROUND_FLOOR,
}


def apply_rounding(
    value: Decimal | None,
    rounding_function: str | None,
    rounding_precision: int | None,
) -> Decimal | None:
    """Apply rounding to an aggregated value."""
    if value is None or rounding_function is None:
        return value

    mode = _ROUNDING_MODES.get(rounding_function)
    if mode is None:
        raise ValueError(f"Unknown rounding function: {rounding_function}")

    precision = rounding_precision if rounding_precision is not None else 0
    return value.quantize(Decimal(10) ** -precision, rounding=mode)
