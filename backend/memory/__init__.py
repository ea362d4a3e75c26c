from .database import SQLiteMemoryDB
from .time_utils import parse_iso, to_iso, utc_now

__all__ = [
    "SQLiteMemoryDB",
    "parse_iso",
    "to_iso",
    "utc_now",
]
