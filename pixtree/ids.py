"""
Identifier generation for projects, trees, and nodes.

IDs look like ``node-m1k2z3a4-9f8e7d6c``: the entity kind, the creation
time in milliseconds (base 36), and 32 random bits. The timestamp prefix
keeps IDs of one kind roughly sortable by creation time.
"""

import secrets
import time

KINDS = ("project", "tree", "node")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def new_id(kind: str) -> str:
    """Generate a new identifier for an entity of the given kind."""
    if kind not in KINDS:
        raise ValueError(f"Unknown entity kind: {kind!r} (expected one of {', '.join(KINDS)})")
    timestamp = _base36(time.time_ns() // 1_000_000)
    return f"{kind}-{timestamp}-{secrets.token_hex(4)}"


def id_kind(id: str) -> str | None:
    """Return the kind prefix of an ID, or None if it has no known prefix."""
    prefix = id.split("-", 1)[0]
    return prefix if prefix in KINDS else None
