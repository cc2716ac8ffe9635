"""Adapters — storage backends for the consent engine.

Contains:
- memory.py        — InMemoryDataAdapter (process-local dicts)
- tables.py        — SQLAlchemy ORM tables
- repositories.py  — SqlAlchemyDataAdapter (any async SQLAlchemy driver)
"""

from consent_engine.adapters.memory import InMemoryDataAdapter
from consent_engine.adapters.repositories import SqlAlchemyDataAdapter

__all__: list[str] = ["InMemoryDataAdapter", "SqlAlchemyDataAdapter"]
