"""Database module for the weatherb engine."""

from .database import DEFAULT_ASYNC_DATABASE_URL, Database, open_database
from .models import Base, DeadLetter, KeyValue, QueueJob

__all__ = [
    "Base",
    "Database",
    "DeadLetter",
    "DEFAULT_ASYNC_DATABASE_URL",
    "KeyValue",
    "QueueJob",
    "open_database",
]
