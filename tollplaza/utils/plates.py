# tollplaza/utils/plates.py
"""
Plate number normalization.
Every vehicle lookup goes through normalize_plate() so "abc 123", "ABC-123"
and "ABC123" resolve to the same vehicle. Letters of any script are kept:
"أ ب ج 1234" and "د ه و 1234" stay two different plates.
"""

import re

# Whitespace, dashes, dots, slashes and underscores; every letter and digit survives
_SEPARATORS = re.compile(r"[\W_]+")


def normalize_plate(plate_text: str | None) -> str:
    """Uppercase and drop whitespace and separators. Returns "" for blanks."""
    if not plate_text:
        return ""
    return _SEPARATORS.sub("", plate_text.strip()).upper()
