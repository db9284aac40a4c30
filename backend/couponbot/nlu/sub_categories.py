"""
Sub-category (mess name) detection.

WHAT: Find which mess a coupon is for in free chat text
WHY: Sellers misspell mess names constantly
HOW: Word-boundary alias table first, then edit-distance matching per word
"""

import re
from typing import Optional

MESS_NAMES = ["SGR", "SRR", "Firstman", "Prism", "Neelkesh", "Food Sutra", "Vindhya"]

# SGR and SRR are one edit apart, so they only match through these aliases
MESS_ALIASES = {
    "sgr": "SGR", "sagar": "SGR", "sagr": "SGR",
    "srr": "SRR", "south": "SRR", "south mess": "SRR", "southmess": "SRR",
    "firstman": "Firstman", "first man": "Firstman", "1st man": "Firstman",
    "1stman": "Firstman", "firstmen": "Firstman", "fristman": "Firstman",
    "prism": "Prism", "prizm": "Prism", "prisim": "Prism",
    "neelkesh": "Neelkesh", "nilkesh": "Neelkesh", "neelkash": "Neelkesh", "neel": "Neelkesh",
    "food sutra": "Food Sutra", "foodsutra": "Food Sutra", "food suthra": "Food Sutra",
    "fs": "Food Sutra",
    "vindhya": "Vindhya", "vindya": "Vindhya", "vindhaya": "Vindhya", "vindh": "Vindhya",
}

_EXACT_ONLY = {"sgr", "srr"}

_ALIAS_PATTERNS = [
    (re.compile(rf"\b{re.escape(alias)}\b"), name)
    # Longest aliases first so "south mess" wins over "south"
    for alias, name in sorted(MESS_ALIASES.items(), key=lambda item: -len(item[0]))
]


def levenshtein(a: str, b: str) -> int:
    """Edit distance between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def _max_distance(target: str) -> int:
    if target in _EXACT_ONLY:
        return 0
    # Five-letter names stay at 1 so "price" never reads as "prism"
    if len(target) <= 5:
        return 1
    return min(2, int(len(target) * 0.3))


def match_sub_category(text: str, candidates: Optional[list[str]] = None) -> Optional[str]:
    """
    Detect a mess name in text.

    Args:
        text: Free chat text
        candidates: Known names (defaults to MESS_NAMES)

    Returns:
        Canonical mess name or None
    """
    if not text:
        return None
    lowered = text.lower()
    names = candidates or MESS_NAMES

    for pattern, name in _ALIAS_PATTERNS:
        if name in names and pattern.search(lowered):
            return name

    for name in names:
        if re.search(rf"\b{re.escape(name.lower())}\b", lowered):
            return name

    best: tuple[int, Optional[str]] = (99, None)
    words = re.findall(r"[a-z0-9]+", lowered)
    for name in names:
        target = name.lower().replace(" ", "")
        if target in _EXACT_ONLY:
            continue
        for word in words:
            if len(word) < 3:
                continue
            distance = levenshtein(word, target)
            if distance <= _max_distance(target) and distance < best[0]:
                best = (distance, name)
    return best[1]
