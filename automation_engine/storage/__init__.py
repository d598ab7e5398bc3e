"""Database models and storage layer."""

from .database import (
    Base,
    create_database_engine,
    get_database_engine,
    reset_database_engine,
    create_session_factory,
    create_tables,
    drop_tables,
)
from .models import WorkflowDefinitionModel, ExecutionRunModel, ActionResultModel

__all__ = [
    "Base",
    "create_database_engine",
    "get_database_engine",
    "reset_database_engine",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "WorkflowDefinitionModel",
    "ExecutionRunModel",
    "ActionResultModel",
]
