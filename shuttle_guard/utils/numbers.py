import math


def round_half_up(value: float, ndigits: int = 0):
    """Round like JavaScript's Math.round: halves go up (2.5 -> 3, -2.5 -> -2)."""
    factor = 10 ** ndigits
    rounded = math.floor(value * factor + 0.5) / factor
    return int(rounded) if ndigits == 0 else rounded
