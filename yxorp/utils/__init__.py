from typing import Optional


def first_header_value(value: Optional[str]) -> Optional[str]:
    """First entry of a comma separated header value, e.g. X-Forwarded-For."""
    if not value:
        return None
    first = value.split(",", 1)[0].strip()
    return first or None


def strip_header_prefixes(headers, names: set[str], prefixes: tuple[str, ...] = ()):
    """Header pairs without the given names or name prefixes (case-insensitive)."""
    return [
        (name, value)
        for name, value in headers
        if name.lower() not in names and not name.lower().startswith(prefixes)
    ]
