# Pinboard: bounded, time-decaying quick-access pins per user
#
# Components:
#   schema.py      - Data model (PinnedItem, EntityType, PinView, PinChangeSet)
#   errors.py      - Error taxonomy returned to callers
#   clock.py       - Staleness clock and injectable clocks
#   config.py      - YAML-backed configuration
#   store.py       - Pin store: capacity, uniqueness, eviction, ordering
#   persistence.py - SQLite persistence collaborator
#   events.py      - Mutation notifications for hosts
#   preferences.py - Per-user key-value preferences (write-through)
#   messages.py    - Actionable text for pins and errors
