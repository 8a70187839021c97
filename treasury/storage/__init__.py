"""Concrete persistence implementations.

- sqlite: SQLAlchemy-backed embedded store (default for the daemon)
- memory: in-process store for tests and dry runs
"""
