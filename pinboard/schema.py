"""
Pinned item schema.

Pin lifecycle:
  pin → (touch | reorder)* → unpin | auto-expired eviction

A pin holds a non-owning reference to an entity (entity_type + entity_id).
The entity itself lives elsewhere and may disappear at any time.
"""
from enum import Enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Tuple

from .errors import InvalidEntityType


class EntityType(Enum):
    """Kinds of entities that can be pinned."""
    TASK = "task"
    PROJECT = "project"
    CONTACT = "contact"
    ROUTINE = "routine"
    LIST = "list"

    @classmethod
    def parse(cls, value: Any) -> "EntityType":
        """Coerce a string (or EntityType) into the closed set, else raise."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidEntityType(str(value), allowed=cls.values()) from None

    @classmethod
    def values(cls) -> List[str]:
        return [member.value for member in cls]

    @property
    def label(self) -> str:
        return ENTITY_LABELS[self]

    @property
    def icon(self) -> str:
        return ENTITY_ICONS[self]


ENTITY_LABELS: Dict[EntityType, str] = {
    EntityType.TASK: "Task",
    EntityType.PROJECT: "Project",
    EntityType.CONTACT: "Contact",
    EntityType.ROUTINE: "Routine",
    EntityType.LIST: "List",
}

ENTITY_ICONS: Dict[EntityType, str] = {
    EntityType.TASK: "check",
    EntityType.PROJECT: "folder",
    EntityType.CONTACT: "user",
    EntityType.ROUTINE: "repeat",
    EntityType.LIST: "list",
}

AUTO_EXPIRED = "auto-expired"


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or datetime into an aware UTC datetime."""
    if isinstance(value, datetime):
        ts = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        ts = datetime.fromisoformat(text)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass(frozen=True)
class PinnedItem:
    """One pinned entity for one user. Immutable; mutations produce copies."""

    id: str
    entity_type: EntityType
    entity_id: str
    display_order: int
    pinned_at: datetime
    last_accessed_at: datetime

    @property
    def key(self) -> Tuple[EntityType, str]:
        """Logical key: an entity can be pinned at most once per user."""
        return (self.entity_type, self.entity_id)

    def sort_key(self) -> Tuple[int, datetime]:
        return (self.display_order, self.pinned_at)

    def touched(self, now: datetime) -> "PinnedItem":
        # last_accessed_at never moves backwards
        return replace(self, last_accessed_at=max(self.last_accessed_at, now))

    def moved(self, display_order: int) -> "PinnedItem":
        return replace(self, display_order=display_order)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses."""
        return {
            "id": self.id,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "display_order": self.display_order,
            "pinned_at": self.pinned_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat(),
        }

    def to_row(self, user_id: str) -> Dict[str, Any]:
        """Serialize to the persisted row shape."""
        row = self.to_dict()
        row["user_id"] = user_id
        return row

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PinnedItem":
        """Deserialize a persisted row. Raises InvalidEntityType for unknown types."""
        pinned_at = parse_timestamp(row["pinned_at"])
        last_accessed_at = parse_timestamp(row.get("last_accessed_at") or pinned_at)
        return cls(
            id=str(row["id"]),
            entity_type=EntityType.parse(row["entity_type"]),
            entity_id=str(row["entity_id"]),
            display_order=int(row.get("display_order") or 0),
            pinned_at=pinned_at,
            # Clamp rows written by clients whose clocks ran behind
            last_accessed_at=max(last_accessed_at, pinned_at),
        )


@dataclass(frozen=True)
class PinView:
    """A pinned item as listed, with derived flags computed at read time."""

    item: PinnedItem
    is_stale: bool
    is_dangling: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = self.item.to_dict()
        data["is_stale"] = self.is_stale
        data["is_dangling"] = self.is_dangling
        return data


@dataclass(frozen=True)
class EvictedPin:
    """A pin removed by the store on its own, with the reason why."""

    item: PinnedItem
    reason: str = AUTO_EXPIRED

    def to_dict(self) -> Dict[str, Any]:
        return {"pin": self.item.to_dict(), "reason": self.reason}


@dataclass
class PinChangeSet:
    """All row changes of one transition, handed to persistence as a unit."""

    created: List[PinnedItem] = field(default_factory=list)
    updated: List[PinnedItem] = field(default_factory=list)
    deleted: List[PinnedItem] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.created or self.updated or self.deleted)


def find_by_key(
    items, entity_type: EntityType, entity_id: str
) -> Optional[PinnedItem]:
    for item in items:
        if item.entity_type == entity_type and item.entity_id == entity_id:
            return item
    return None


def find_by_id(items, pin_id: str) -> Optional[PinnedItem]:
    for item in items:
        if item.id == pin_id:
            return item
    return None
