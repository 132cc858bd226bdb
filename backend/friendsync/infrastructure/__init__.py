"""Infrastructure Layer: database sessions, change feed, and logging.

Invariants:
    - Infrastructure never imports from core/ domain logic, except the error types
      it maps driver failures onto
"""
