# Move board: lane-ordered pipeline of client moves plus the triage workflow
#
# Components:
#   schema.py   - Data model (Move, Lane, DrainType, DragOperation, TriageResult)
#   errors.py   - Error taxonomy (ValidationError, NotFound, NetworkError, TriageUnavailable)
#   store.py    - SQLite persistence layer with dense per-lane ordering
#   pipeline.py - Server-side triage run (promotions, field backfills, health)
#   gateway.py  - Async data-access contract + in-process store binding
#   client.py   - REST/JSON binding of the contract over requests
#   events.py   - Event bus for notifications and state changes
#   board.py    - Board engine: lane views, drop resolution, reconciliation
#   triage.py   - Rewrite selection and batch apply
#   config.py   - YAML settings (load at startup, save on change)
#   briefing.py - Once-a-day briefing gate and connectivity probe
