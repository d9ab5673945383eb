"""
Pin store: the per-user pin set and its policy.

Invariants held after every transition:
  - at most ``max_pins`` pins per user
  - (entity_type, entity_id) unique per user
  - last_accessed_at >= pinned_at
  - display_order unique after a reorder

Each user's pin set is an immutable tuple swapped in whole under that user's
lock, so readers never see a half-applied write and never wait on writers.
Persistence runs before the swap; if it raises, the new tuple is dropped.
"""
import logging
import threading
import uuid
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from .clock import Clock, system_clock, is_stale, should_auto_unpin
from .config import PinConfig
from .errors import CapacityExceeded, DuplicatePin, InvalidEntityType, InvalidReorder, NotFound, PinError
from .events import PinEventBridge
from .schema import (
    AUTO_EXPIRED,
    EntityType,
    EvictedPin,
    PinChangeSet,
    PinnedItem,
    PinView,
    find_by_id,
    find_by_key,
)

logger = logging.getLogger(__name__)

# (entity_type, entity_id) -> does the entity still exist?
EntityResolver = Callable[[EntityType, str], bool]


class PinRepository(Protocol):
    """Persistence collaborator contract."""

    def load(self, user_id: str) -> List[Dict[str, Any]]:
        ...

    def apply(self, user_id: str, changes: PinChangeSet) -> None:
        """Persist one transition atomically or raise PersistenceError."""
        ...


class PinStore:
    """In-memory pin sets for many users, one lock per user."""

    def __init__(
        self,
        config: Optional[PinConfig] = None,
        clock: Clock = system_clock,
        repository: Optional[PinRepository] = None,
        resolver: Optional[EntityResolver] = None,
        events: Optional[PinEventBridge] = None,
    ):
        self.config = config or PinConfig()
        self.clock = clock
        self.repository = repository
        self.resolver = resolver
        self.events = events or PinEventBridge()
        self._pins: Dict[str, Tuple[PinnedItem, ...]] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @property
    def max_pins(self) -> int:
        return self.config.max_pins

    # ──────────────────────────────────────────
    # Session lifecycle
    # ──────────────────────────────────────────

    def load(self, user_id: str, rows: Optional[Iterable[Dict[str, Any]]] = None) -> List[PinnedItem]:
        """Install a user's persisted pins. Reads the repository when rows is None."""
        if rows is None:
            rows = self.repository.load(user_id) if self.repository else []

        items: List[PinnedItem] = []
        seen = set()
        for row in rows:
            try:
                item = PinnedItem.from_row(row)
            except (InvalidEntityType, KeyError, ValueError) as e:
                logger.warning(f"Skipping unreadable pin row for user {user_id}: {e}")
                continue
            if item.key in seen:
                logger.warning(
                    f"Skipping duplicate pin {item.entity_type.value}:{item.entity_id} "
                    f"for user {user_id}"
                )
                continue
            seen.add(item.key)
            items.append(item)

        if len(items) > self.max_pins:
            logger.warning(
                f"User {user_id} has {len(items)} pins stored, above the limit of "
                f"{self.max_pins}; new pins will be refused until some are removed"
            )

        with self._lock_for(user_id):
            self._pins[user_id] = self._sorted(items)
        return list(self._pins[user_id])

    def unload(self, user_id: str) -> None:
        """Forget a user's in-memory pins (session end). The user's lock is kept."""
        with self._lock_for(user_id):
            self._pins.pop(user_id, None)

    def is_loaded(self, user_id: str) -> bool:
        return user_id in self._pins

    # ──────────────────────────────────────────
    # Mutations
    # ──────────────────────────────────────────

    def pin(self, user_id: str, entity_type: Any, entity_id: str) -> PinnedItem:
        """Pin an entity, evicting one auto-unpin eligible pin if the set is full."""
        entity_type = EntityType.parse(entity_type)
        entity_id = str(entity_id)

        with self._lock_for(user_id):
            now = self.clock()
            current = self._snapshot(user_id)
            if find_by_key(current, entity_type, entity_id):
                raise DuplicatePin(entity_type.value, entity_id)

            changes = PinChangeSet()
            remaining = list(current)
            evicted = None
            if len(remaining) >= self.max_pins:
                evicted = self._eviction_candidate(remaining, now)
                if evicted is not None:
                    remaining.remove(evicted)
                    changes.deleted.append(evicted)
                if len(remaining) >= self.max_pins:
                    raise CapacityExceeded(self.max_pins)

            next_order = max((p.display_order for p in current), default=-1) + 1
            item = PinnedItem(
                id=str(uuid.uuid4()),
                entity_type=entity_type,
                entity_id=entity_id,
                display_order=next_order,
                pinned_at=now,
                last_accessed_at=now,
            )
            changes.created.append(item)
            self._commit(user_id, remaining + [item], changes)

        if evicted is not None:
            logger.info(
                f"Evicted idle pin {evicted.entity_type.value}:{evicted.entity_id} "
                f"for user {user_id} to make room"
            )
            self.events.emit("pin_evicted", user_id=user_id, evicted=EvictedPin(evicted))
        self.events.emit("pin_created", user_id=user_id, item=item)
        return item

    def unpin(self, user_id: str, entity_type: Any, entity_id: str) -> PinnedItem:
        """Remove a pin by entity. Other pins keep their display_order."""
        entity_type = EntityType.parse(entity_type)
        with self._lock_for(user_id):
            current = self._snapshot(user_id)
            item = find_by_key(current, entity_type, str(entity_id))
            if item is None:
                raise NotFound(f"{entity_type.value} {entity_id}")
            self._remove(user_id, current, item)
        self.events.emit("pin_removed", user_id=user_id, item=item)
        return item

    def unpin_by_id(self, user_id: str, pin_id: str) -> PinnedItem:
        """Remove a pin by its record id."""
        with self._lock_for(user_id):
            current = self._snapshot(user_id)
            item = find_by_id(current, pin_id)
            if item is None:
                raise NotFound(f"pin {pin_id}")
            self._remove(user_id, current, item)
        self.events.emit("pin_removed", user_id=user_id, item=item)
        return item

    def touch(self, user_id: str, entity_type: Any, entity_id: str) -> PinnedItem:
        """Record that the user opened the pinned entity."""
        entity_type = EntityType.parse(entity_type)
        with self._lock_for(user_id):
            current = self._snapshot(user_id)
            item = find_by_key(current, entity_type, str(entity_id))
            if item is None:
                raise NotFound(f"{entity_type.value} {entity_id}")
            touched = self._touch(user_id, current, item)
        self.events.emit("pin_touched", user_id=user_id, item=touched)
        return touched

    def touch_by_id(self, user_id: str, pin_id: str) -> PinnedItem:
        """Refresh a stale pin by its record id."""
        with self._lock_for(user_id):
            current = self._snapshot(user_id)
            item = find_by_id(current, pin_id)
            if item is None:
                raise NotFound(f"pin {pin_id}")
            touched = self._touch(user_id, current, item)
        self.events.emit("pin_touched", user_id=user_id, item=touched)
        return touched

    def reorder(self, user_id: str, ordered_ids: List[str]) -> List[PinnedItem]:
        """Assign display_order 0..N-1 following ordered_ids (all current pin ids)."""
        ordered_ids = [str(pin_id) for pin_id in ordered_ids]
        with self._lock_for(user_id):
            current = self._snapshot(user_id)
            by_id = {p.id: p for p in current}
            if len(set(ordered_ids)) != len(ordered_ids):
                raise InvalidReorder("the same pin appears more than once")
            unknown = [pin_id for pin_id in ordered_ids if pin_id not in by_id]
            if unknown:
                raise InvalidReorder(f"unknown pin ids {unknown}")
            if len(ordered_ids) != len(current):
                raise InvalidReorder(
                    f"expected all {len(current)} pins, got {len(ordered_ids)}"
                )

            reordered = [by_id[pin_id].moved(index) for index, pin_id in enumerate(ordered_ids)]
            changes = PinChangeSet(
                updated=[p for p in reordered if p.display_order != by_id[p.id].display_order]
            )
            self._commit(user_id, reordered, changes)
            result = list(self._pins[user_id])
        self.events.emit("pins_reordered", user_id=user_id, items=result)
        return result

    def sweep(self, user_id: str) -> List[EvictedPin]:
        """Evict every auto-unpin eligible pin and report what went and why."""
        with self._lock_for(user_id):
            now = self.clock()
            current = self._snapshot(user_id)
            expired = [p for p in current if self._eligible(p, now)]
            if expired:
                kept = [p for p in current if p not in expired]
                self._commit(user_id, kept, PinChangeSet(deleted=expired))

        evicted = [EvictedPin(item, AUTO_EXPIRED) for item in expired]
        for entry in evicted:
            logger.info(
                f"Swept expired pin {entry.item.entity_type.value}:{entry.item.entity_id} "
                f"for user {user_id}"
            )
            self.events.emit("pin_evicted", user_id=user_id, evicted=entry)
        return evicted

    # ──────────────────────────────────────────
    # Reads (lock-free, snapshot based)
    # ──────────────────────────────────────────

    def list(self, user_id: str) -> List[PinView]:
        """All pins in display order with staleness and dangling flags."""
        now = self.clock()
        views = [
            PinView(
                item=item,
                is_stale=is_stale(now, item.last_accessed_at, self.config.stale_threshold_days),
                is_dangling=self._is_dangling(user_id, item),
            )
            for item in self._pins.get(user_id, ())
        ]
        dangling = [v for v in views if v.is_dangling]
        if dangling:
            logger.warning(f"User {user_id} has {len(dangling)} dangling pin(s)")
            self.events.emit("dangling_pins", user_id=user_id, views=dangling)
        return views

    def get(self, user_id: str, entity_type: Any, entity_id: str) -> PinView:
        entity_type = EntityType.parse(entity_type)
        item = find_by_key(self._pins.get(user_id, ()), entity_type, str(entity_id))
        if item is None:
            raise NotFound(f"{entity_type.value} {entity_id}")
        return PinView(
            item=item,
            is_stale=is_stale(self.clock(), item.last_accessed_at, self.config.stale_threshold_days),
            is_dangling=self._is_dangling(user_id, item),
        )

    def is_pinned(self, user_id: str, entity_type: Any, entity_id: str) -> bool:
        try:
            entity_type = EntityType.parse(entity_type)
        except InvalidEntityType:
            return False
        return find_by_key(self._pins.get(user_id, ()), entity_type, str(entity_id)) is not None

    def can_pin(self, user_id: str) -> bool:
        """True while below capacity. Eviction is not considered."""
        return len(self._pins.get(user_id, ())) < self.max_pins

    def count(self, user_id: str) -> int:
        return len(self._pins.get(user_id, ()))

    # ──────────────────────────────────────────
    # Internals
    # ──────────────────────────────────────────

    def _lock_for(self, user_id: str) -> threading.Lock:
        """Per-user lock, kept for the life of the process.

        unload() leaves it in place so a writer still waiting on it can never
        race one holding a freshly created lock for the same user.
        """
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def _snapshot(self, user_id: str) -> Tuple[PinnedItem, ...]:
        return self._pins.get(user_id, ())

    @staticmethod
    def _sorted(items: Iterable[PinnedItem]) -> Tuple[PinnedItem, ...]:
        return tuple(sorted(items, key=PinnedItem.sort_key))

    def _eligible(self, item: PinnedItem, now) -> bool:
        return should_auto_unpin(now, item.last_accessed_at, self.config.auto_unpin_threshold_days)

    def _eviction_candidate(self, items: List[PinnedItem], now) -> Optional[PinnedItem]:
        """Oldest last access among eligible pins; ties go to the smallest display_order."""
        eligible = [p for p in items if self._eligible(p, now)]
        if not eligible:
            return None
        return min(eligible, key=lambda p: (p.last_accessed_at, p.display_order))

    def _remove(self, user_id: str, current: Tuple[PinnedItem, ...], item: PinnedItem) -> None:
        kept = [p for p in current if p.id != item.id]
        self._commit(user_id, kept, PinChangeSet(deleted=[item]))

    def _touch(self, user_id: str, current: Tuple[PinnedItem, ...], item: PinnedItem) -> PinnedItem:
        touched = item.touched(self.clock())
        updated = [touched if p.id == item.id else p for p in current]
        self._commit(user_id, updated, PinChangeSet(updated=[touched]))
        return touched

    def _commit(self, user_id: str, items: List[PinnedItem], changes: PinChangeSet) -> None:
        """Persist then publish. Caller holds the user's lock."""
        if self.repository is not None and not changes.is_empty():
            try:
                self.repository.apply(user_id, changes)
            except PinError as e:
                logger.warning(f"Rolled back pin change for user {user_id}: {e}")
                raise
        self._pins[user_id] = self._sorted(items)

    def _is_dangling(self, user_id: str, item: PinnedItem) -> bool:
        if self.resolver is None:
            return False
        try:
            return not self.resolver(item.entity_type, item.entity_id)
        except Exception as e:
            logger.warning(
                f"Entity check failed for {item.entity_type.value}:{item.entity_id} "
                f"(user {user_id}): {e}"
            )
            return False
