"""
Identifier and timestamp helpers.
"""
import os
import threading
import time
import uuid
from datetime import datetime, timezone

_RANDOM_BITS = 80
_sortable_lock = threading.Lock()
_last_sortable = (0, 0)


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def generate_uuid() -> str:
    """Generate a UUID string."""
    return str(uuid.uuid4())


def new_sortable_id() -> str:
    """
    Generate a lexicographically time-sortable identifier.

    Twelve hex digits of millisecond timestamp followed by twenty random hex
    digits. Within one process ids are strictly increasing: an id created in
    the same millisecond as the previous one increments its random part.
    """
    global _last_sortable
    with _sortable_lock:
        millis = int(time.time() * 1000)
        last_millis, last_random = _last_sortable
        if millis <= last_millis and last_random + 1 < (1 << _RANDOM_BITS):
            millis, random_part = last_millis, last_random + 1
        else:
            millis = max(millis, last_millis + 1) if millis <= last_millis else millis
            random_part = int.from_bytes(os.urandom(10), "big") >> 1
        _last_sortable = (millis, random_part)
    return f"{millis:012x}{random_part:020x}"
