"""sqltemplate: thin SQL execution facade over DB-API connections (SQLite).

Keep callers free of cursor/connection bookkeeping: pass SQL, ordered params
and a row mapper; connections are borrowed from a TransactionContext when one
is bound, otherwise acquired and released per call.
"""
from __future__ import annotations

from .db import DataSourceConfig, SqliteDataSource, get_conn, get_db_path, load_config
from .errors import DataAccessError, IncorrectResultSizeError
from .statement import PreparedStatement, SqlRequest, StatementExecutor
from .template import QueryTemplate
from .transaction import TransactionContext, TransactionManager

__all__ = [
    "DataAccessError",
    "DataSourceConfig",
    "IncorrectResultSizeError",
    "PreparedStatement",
    "QueryTemplate",
    "SqlRequest",
    "SqliteDataSource",
    "StatementExecutor",
    "TransactionContext",
    "TransactionManager",
    "get_conn",
    "get_db_path",
    "load_config",
]
