"""Random draws shared by the hedge loop"""

import random
from typing import Optional


def random_between(min_value: float, max_value: float, rng: Optional[random.Random] = None) -> float:
    """Uniform float in [min_value, max_value]"""
    rng = rng or random
    return rng.uniform(min_value, max_value)


def random_integer_between(min_value: int, max_value: int, rng: Optional[random.Random] = None) -> int:
    """Uniform integer in [min_value, max_value], both ends inclusive"""
    rng = rng or random
    return rng.randint(min_value, max_value)
