import math
from typing import Any, List


def round_half_up(value: float) -> int:
    """Rounds .5 away from zero for positive values, as the modeling tool does (not banker's rounding)."""
    return int(math.floor(value + 0.5))


def percentage(count: int, total: int) -> int:
    if not total:
        return 0
    return round_half_up(count / total * 100)


def contains_sample(samples: List[Any], value: Any) -> bool:
    """Membership test that does not treat True as a duplicate of 1 (or 1.0 of 1)."""
    return any(type(sample) is type(value) and sample == value for sample in samples)


def is_system_collection(name: str) -> bool:
    return name.startswith("system.")
