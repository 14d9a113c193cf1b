"""Human-readable timestamps for message bubbles, day separators and presence."""
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

from dmchat.schemas.message import Message


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc).astimezone()


def _localize(ts: datetime, now: datetime) -> datetime:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(now.tzinfo) if now.tzinfo else ts


def format_time(ts: datetime, now: Optional[datetime] = None) -> str:
    """
    Short label for a timestamp relative to ``now``:
    - under a day ago: "3:07 PM"
    - one day ago: "Yesterday"
    - under a week ago: "Mon"
    - older: "Jan 5"
    """
    now = _now(now)
    local = _localize(ts, now)
    days = (now - local).days
    if days == 0:
        return local.strftime("%I:%M %p").lstrip("0")
    if days == 1:
        return "Yesterday"
    if days < 7:
        return local.strftime("%a")
    return f"{local.strftime('%b')} {local.day}"


def format_day_separator(ts: datetime, now: Optional[datetime] = None) -> str:
    now = _now(now)
    local = _localize(ts, now)
    label = f"{local.strftime('%b')} {local.day}"
    if local.year != now.year:
        label = f"{label}, {local.year}"
    return label


def group_by_day(messages: Iterable[Message], now: Optional[datetime] = None) -> List[Tuple[str, List[Message]]]:
    """Split an ordered message sequence into runs sharing a calendar date."""
    now = _now(now)
    groups: List[Tuple[str, List[Message]]] = []
    current_date = None
    for message in messages:
        local = _localize(message.created_at, now)
        if local.date() != current_date:
            current_date = local.date()
            groups.append((format_day_separator(local, now), []))
        groups[-1][1].append(message)
    return groups


def presence_label(is_online: bool, last_seen: datetime, now: Optional[datetime] = None) -> str:
    if is_online:
        return "Online"
    return f"Last seen {format_time(last_seen, now)}"
