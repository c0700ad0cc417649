import time
from datetime import datetime
from zoneinfo import ZoneInfo

# -------------------------------------------------------------- #
# Util Functions
# -------------------------------------------------------------- #


def get_current_timestamp_est() -> datetime:
    """Get the current EST timestamp."""
    return datetime.now(ZoneInfo("America/New_York"))


def now_ms() -> int:
    """Wall-clock milliseconds since the epoch."""
    return int(time.time() * 1000)


def format_session_key(guild_id: int | str) -> str:
    """Session keys are the guild id as a string (one voice room per guild)."""
    key = str(guild_id).strip()
    if not key:
        raise ValueError("guild_id must not be empty")
    return key
