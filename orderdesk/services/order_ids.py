"""
Order Identifier Generator

Order ids double as display codes ("#4821937") and storage keys. They are
seven digits, the first one never zero, so they read aloud and type cleanly.

Generation is not cryptographic and not unique by itself: 9 x 10^6 possible
ids. Order creation writes with a conditional create and turns a taken id
into a ``CollisionError``.
"""

import random
import re
from typing import Optional

ORDER_ID_LENGTH = 7
ORDER_ID_PATTERN = re.compile(r"^[1-9][0-9]{6}$")

_LEADING_DIGITS = "123456789"
_DIGITS = "0123456789"


def generate_order_id(rng: Optional[random.Random] = None) -> str:
    """Return a candidate order id such as ``"4821937"``."""
    rng = rng or random
    first = rng.choice(_LEADING_DIGITS)
    rest = "".join(rng.choice(_DIGITS) for _ in range(ORDER_ID_LENGTH - 1))
    return f"{first}{rest}"


def is_valid_order_id(value: str) -> bool:
    return bool(value) and ORDER_ID_PATTERN.match(value) is not None


def format_order_id(order_id: str) -> str:
    """Display form used on tickets and the dashboard."""
    return f"#{order_id}"
