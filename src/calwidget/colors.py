"""Calendar color helpers."""

from __future__ import annotations

# Fallback palette for calendars that do not declare a background color.
DEFAULT_CALENDAR_COLORS = (
    "#7986cb",
    "#33b679",
    "#8e24aa",
    "#e67c73",
    "#f6bf26",
    "#f4511e",
    "#039be5",
    "#616161",
    "#3f51b5",
    "#0b8043",
)


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x1_0000_0000 if value & 0x8000_0000 else value


def calendar_id_hash(calendar_id: str) -> int:
    """Signed 32-bit ``h = h * 31 + unit`` over the id's UTF-16 code units.

    Stable across runs and platforms, and identical to the hash the widget
    front end uses, so a calendar keeps its color everywhere.
    """
    # Lone surrogates are hashed as the code units they are.
    encoded = calendar_id.encode("utf-16-le", "surrogatepass")
    h = 0
    for offset in range(0, len(encoded), 2):
        unit = encoded[offset] | (encoded[offset + 1] << 8)
        h = _to_int32((h << 5) - h + unit)
    return h


def derive_calendar_color(calendar_id: str) -> str:
    """Deterministic palette color for *calendar_id*."""
    index = abs(calendar_id_hash(calendar_id)) % len(DEFAULT_CALENDAR_COLORS)
    return DEFAULT_CALENDAR_COLORS[index]


def resolve_calendar_color(calendar_id: str, background_color: str | None) -> str:
    """The calendar's declared color, else the derived one."""
    return background_color or derive_calendar_color(calendar_id)
