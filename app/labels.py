from __future__ import annotations

import string
from typing import List


ALPHABET = string.ascii_uppercase


def index_to_label(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA, 27 -> AB, 52 -> BA."""
    if index < 0:
        raise ValueError("Label index must be non-negative.")
    label = ""
    value = index
    while True:
        label = ALPHABET[value % 26] + label
        value = value // 26 - 1
        if value < 0:
            return label


def next_labels(existing_count: int, count_needed: int) -> List[str]:
    return [index_to_label(existing_count + offset) for offset in range(max(0, count_needed))]
