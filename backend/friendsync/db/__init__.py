"""Database Infrastructure: SQLAlchemy declarative Base.

Design Decisions:
    - asyncpg driver for PostgreSQL (native async, no thread pool overhead)
"""
