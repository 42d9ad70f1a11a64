"""
Database module.
Contains the store connection, the message model, and the claim engine.
"""

from sqslite.db.connection import (
    close_db,
    create_session_factory,
    get_engine,
    get_session_context,
    init_db,
    open_store,
    session_scope,
    setup,
)
from sqslite.db.models import Base, Message
from sqslite.db.repository import MessageRepository

__all__ = [
    "open_store",
    "setup",
    "create_session_factory",
    "session_scope",
    "get_engine",
    "init_db",
    "close_db",
    "get_session_context",
    "Base",
    "Message",
    "MessageRepository",
]
