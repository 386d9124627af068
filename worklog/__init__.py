# Work-log kanban: board state, remote data client, shift schedules, audit trail
#
# Components:
#   schema.py     - Data model (Board, Column, Task, ShiftEnum, AuditEvent)
#   errors.py     - Exception hierarchy shared by client and server
#   store.py      - SQLite persistence layer behind the table proxy
#   cache.py      - TTL board cache (kanban/user/project categories)
#   client.py     - HTTP client for the table proxy, move and cache endpoints
#   mutations.py  - Task/column request builders with cache-aware variants
#   board.py      - Board state with optimistic snapshots, loader, write path
#   dnd.py        - Drag-and-drop controller (optimistic move + reconcile)
#   events.py     - Toast notifications
#   shifts.py     - Shift enums and schedule CSV import/export
#   audit.py      - Audit trail logging and queries
#   config.py     - YAML configuration
#   cli.py        - Command line entry point

__version__ = "0.4.0"
