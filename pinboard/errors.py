"""
Pin store error taxonomy.

Every error is local and recoverable: a failed operation leaves the pin set
unchanged. The ``message`` of each error is written for the end user and
names the action they can take next.
"""
from typing import Optional


class PinError(Exception):
    """Base class for all pin store errors."""

    kind = "pin_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidEntityType(PinError):
    """Raised when an entity type is outside the pinnable set."""

    kind = "invalid_entity_type"

    def __init__(self, entity_type: str, allowed: Optional[list] = None):
        self.entity_type = entity_type
        allowed_text = f" Pinnable types: {', '.join(allowed)}." if allowed else ""
        super().__init__(f"'{entity_type}' items can't be pinned.{allowed_text}")


class DuplicatePin(PinError):
    """Raised when the entity is already pinned for the user."""

    kind = "duplicate_pin"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"This {entity_type} is already pinned.")


class NotFound(PinError):
    """Raised when no matching active pin exists."""

    kind = "not_found"

    def __init__(self, description: str):
        super().__init__(f"No pin found for {description}.")


class CapacityExceeded(PinError):
    """Raised when the pin set is full and nothing is old enough to evict."""

    kind = "capacity_exceeded"

    def __init__(self, max_pins: int):
        self.max_pins = max_pins
        super().__init__(
            f"You already have {max_pins} pins. Unpin something else first."
        )


class InvalidReorder(PinError):
    """Raised when a reorder request is not exactly the current pin ids."""

    kind = "invalid_reorder"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Couldn't reorder pins: {reason}. Refresh and try again.")


class PersistenceError(PinError):
    """Raised by a persistence collaborator when a change set can't be saved."""

    kind = "persistence_error"

    def __init__(self, detail: str):
        self.detail = detail
        super().__init__("Your pins couldn't be saved right now. Please try again.")
