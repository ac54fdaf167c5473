from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable


def recompute_average_rating(ratings: Iterable[int]) -> float:
    """Mean of the ratings rounded to one decimal; 0.0 when there are none."""
    values = [Decimal(int(r)) for r in ratings]
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))
