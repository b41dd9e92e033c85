from __future__ import annotations

import re
from typing import AbstractSet, Iterable, Set

from .project_constants import (
    ADDRESS_MAX_LEN,
    ADDRESS_MIN_LEN,
    EXCLUDED_ADDRESSES,
    EXCLUDED_MARKER,
)

# Addresses only show up as quoted string literals in bundled JS/HTML.
CANDIDATE_RE = re.compile(
    rf'(?<=")[A-Za-z0-9]{{{ADDRESS_MIN_LEN},{ADDRESS_MAX_LEN}}}(?=")'
)


def is_excluded(
    candidate: str,
    excluded: AbstractSet[str] = EXCLUDED_ADDRESSES,
    marker: str = EXCLUDED_MARKER,
) -> bool:
    return candidate in excluded or marker in candidate


def scan_candidates(
    texts: Iterable[str],
    excluded: AbstractSet[str] = EXCLUDED_ADDRESSES,
    marker: str = EXCLUDED_MARKER,
) -> Set[str]:
    """Distinct address-shaped tokens across all texts, minus known ids."""
    out: Set[str] = set()
    for text in texts:
        for match in CANDIDATE_RE.findall(text):
            if not is_excluded(match, excluded, marker):
                out.add(match)
    return out
