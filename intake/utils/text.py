from datetime import datetime
from typing import List, Tuple


def split_list(text: str) -> List[str]:
    """Splits a free-form answer on newlines and commas."""
    if not text:
        return []
    parts = text.replace("\r", "").replace("\n", ",").split(",")
    return [item.strip() for item in parts if item.strip()]


def format_date_time(value: str) -> Tuple[str, str]:
    """
    Formats an ISO date/time answer as ("Jun 15, 2024", "02:30 PM").
    Unparseable input comes back unchanged as the date with no time.
    """
    if not value:
        return "", ""
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return value, ""
    date = parsed.strftime("%b %d, %Y")
    has_time = "T" in value or " " in value.strip()
    time = parsed.strftime("%I:%M %p") if has_time else ""
    return date, time

