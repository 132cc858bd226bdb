"""Services Layer: imperative shell around the pure core.

Invariants:
    - Services own every IO step (store reads/writes, change feed publishes)
    - Decisions are delegated to core/; services never re-implement a rule
"""
