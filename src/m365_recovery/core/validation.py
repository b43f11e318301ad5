"""Format-only checks applied before any network call."""

import regex  # Use regex library with timeout, not re

_UUID_PATTERN = r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"


def is_valid_uuid(value: object) -> bool:
    """Return True if value is a canonical 8-4-4-4-12 hex UUID string."""
    if not isinstance(value, str):
        return False
    return regex.match(_UUID_PATTERN, value.strip(), timeout=1) is not None
