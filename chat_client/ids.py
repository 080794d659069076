"""Client-side message id generation."""

import itertools
import time
import uuid

_counter = itertools.count()


def generate_id() -> str:
    """Return a unique id such as ``msg_lz3k9f2a_1b2c3d_7``."""
    timestamp = _base36(int(time.time() * 1000))
    return f"msg_{timestamp}_{uuid.uuid4().hex[:6]}_{next(_counter) % 1000}"


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        value, rem = divmod(value, 36)
        out = digits[rem] + out
        if not value:
            return out
