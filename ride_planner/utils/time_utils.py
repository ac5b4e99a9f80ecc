import re

_HHMM_RE = re.compile(r"^\d{2}:\d{2}$")


def validate_hhmm(value: str) -> str:
    """Return *value* unchanged if it is a valid 'HH:MM' time, else raise ValueError."""
    if not isinstance(value, str) or not _HHMM_RE.match(value):
        raise ValueError(f"Time must be in HH:MM format, got '{value}'")
    hour, minute = int(value[:2]), int(value[3:])
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time value '{value}'")
    return value


def time_str_to_minutes(time_str: str) -> int:
    """Convert 'HH:MM' string to total minutes since midnight. E.g. '08:30' -> 510."""
    h, m = time_str.split(":")
    return int(h) * 60 + int(m)


def minutes_to_time_str(minutes: int) -> str:
    """Convert total minutes since midnight to 'HH:MM'. Wraps at 24 h. E.g. 510 -> '08:30'."""
    minutes = minutes % 1440
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def seconds_to_time_str(seconds: int) -> str:
    """Convert seconds since midnight to 'HH:MM', truncating partial minutes."""
    return minutes_to_time_str(int(seconds) // 60)
