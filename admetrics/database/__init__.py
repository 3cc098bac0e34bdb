"""
Database Module

SQLAlchemy models, session management and the client registry.
"""

from .models import AdClient, Base, MetricsCacheEntry
from .repository import ClientRepository
from .session import (
    check_db_connection,
    create_db_engine,
    get_database_url,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    "AdClient",
    "Base",
    "MetricsCacheEntry",
    "ClientRepository",
    "check_db_connection",
    "create_db_engine",
    "get_database_url",
    "get_engine",
    "get_session_factory",
    "init_db",
]
