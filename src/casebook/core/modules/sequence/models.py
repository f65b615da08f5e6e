"""Human-readable sequence ids such as tc7 or DEF-12."""

import re
from enum import StrEnum


class SequencePrefix(StrEnum):
    """Prefixes of the entity kinds that get a sequence id in their scope."""

    TEST_CASE = "tc"
    DEFECT = "DEF-"
    COMMENT = ""  # Plain numbers per defect


def format_sequence_id(prefix: str, number: int) -> str:
    """Build a sequence id from a prefix and a positive number."""
    if number < 1:
        raise ValueError(f"Sequence numbers start at 1, got {number}")
    return f"{prefix}{number}"


def parse_sequence_number(prefix: str, sequence_id: str) -> int | None:
    """Extract the number of a sequence id, or None if it doesn't carry the prefix."""
    match = re.fullmatch(re.escape(prefix) + r"([1-9][0-9]*)", sequence_id)
    if match is None:
        return None
    return int(match.group(1))
