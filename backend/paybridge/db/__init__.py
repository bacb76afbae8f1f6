"""
Database package for PayBridge.

Exports database initialization, models, and session management.
"""
from .init_db import (
    initialize_database,
    create_tables,
    build_engine,
    get_db,
    get_async_session,
    AsyncSessionLocal,
)
from .models import (
    Base,
    TransactionModel,
    PayoutModel,
    ReconciliationAnomalyModel,
)

__all__ = [
    "initialize_database",
    "create_tables",
    "build_engine",
    "get_db",
    "get_async_session",
    "AsyncSessionLocal",
    "Base",
    "TransactionModel",
    "PayoutModel",
    "ReconciliationAnomalyModel",
]
