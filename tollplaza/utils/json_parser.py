# tollplaza/utils/json_parser.py
"""
Helpers for reading plate-recognition JSON payloads.
The detection backend answers with a JSON array of flat result objects.
"""

import json
from datetime import datetime, timezone
from typing import Optional, Any


def safe_parse_json(raw_body: bytes) -> Optional[Any]:
    """Parse JSON bytes safely. Returns None on error."""
    try:
        return json.loads(raw_body.decode("utf-8", errors="replace"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def first_present(data: dict, *keys: str, default: Any = None) -> Any:
    """Value of the first key that is present and not empty."""
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return default


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string → naive UTC datetime. Returns None when unparseable."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
