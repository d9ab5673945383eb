"""
Text rendering for pins and pin errors.

Capacity and duplicate errors are phrased as choices the user can act on,
never as generic failures.
"""
from typing import Callable, List, Optional

from telegram.helpers import escape_markdown

from .errors import CapacityExceeded, DuplicatePin, PinError
from .schema import EntityType, EvictedPin, PinView

# (entity_type, entity_id) -> display name, or None if unknown
NameLookup = Callable[[EntityType, str], Optional[str]]


def entity_name(view: PinView, names: Optional[NameLookup] = None) -> str:
    item = view.item
    name = names(item.entity_type, item.entity_id) if names else None
    if name:
        return name
    if view.is_dangling:
        return f"Unknown {item.entity_type.label}"
    return f"{item.entity_type.label} {item.entity_id}"


def format_pin_list(
    views: List[PinView],
    max_pins: int,
    names: Optional[NameLookup] = None,
) -> str:
    """Format the pinned section as a short Markdown message. Names and ids are escaped."""
    if not views:
        return "Nothing pinned yet. Use /pin <type> <id> to add one."

    lines = [f"📌 Pinned ({len(views)}/{max_pins}):"]
    for view in views:
        marker = "💤" if view.is_stale else "•"
        name = escape_markdown(entity_name(view, names), version=1)
        line = f"{marker} {name} ({view.item.entity_type.value})"
        if view.is_dangling:
            line += " (no longer exists, /unpin to clean up)"
        elif view.is_stale:
            line += " (not opened in a while)"
        lines.append(f"{line}  `{view.item.id}`")
    return "\n".join(lines)


def format_sweep(evicted: List[EvictedPin]) -> str:
    if not evicted:
        return "No expired pins to clear."
    lines = [f"🧹 Cleared {len(evicted)} expired pin(s):"]
    for entry in evicted:
        item = entry.item
        lines.append(f"• {item.entity_type.label} {item.entity_id} ({entry.reason})")
    return "\n".join(lines)


def describe_error(error: PinError) -> str:
    """The user-facing message for a pin error, with a next step where one exists."""
    if isinstance(error, CapacityExceeded):
        return f"{error.message} Use /pins to choose one to /unpin."
    if isinstance(error, DuplicatePin):
        return f"{error.message} Nothing to do."
    return error.message
