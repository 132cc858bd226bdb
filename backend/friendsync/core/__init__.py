"""Core Layer: pure domain logic, no IO, no async, no DB.

Invariants:
    - No module in core/ imports from services/, api/, infrastructure/, or db/
    - All functions are pure and deterministic (callers pass `now` explicitly)

Design Decisions:
    - Functional core separated from imperative shell: services/ reads the store,
      hands snapshots to core/, then writes whatever core/ decided
"""
