from __future__ import annotations

import re
from typing import List, Tuple

# (trigger, hint) pairs; hints are appended in this order.
EXPANSIONS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"install|setup|configure"), "installation setup configuration"),
    (re.compile(r"error|issue|fail|bug"), "troubleshooting fix resolution"),
    (re.compile(r"price|billing|subscription"), "billing pricing subscription plan"),
    (re.compile(r"api|endpoint|token"), "API REST endpoint authentication token key"),
]


def expand_query(query: str | None) -> str:
    """Append topical hint terms for every trigger the query matches. Never removes terms."""
    q = str(query or "")
    if not q:
        return ""
    low = q.lower()
    hints = [hint for pattern, hint in EXPANSIONS if pattern.search(low)]
    if not hints:
        return q
    return " ".join([q] + hints)
