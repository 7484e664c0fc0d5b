"""
QueryTemplate：SQL 执行门面

每次调用：取连接（事务中借用，否则新取） → 预编译并按序号绑定参数 →
执行策略（更新计数 / 行映射查询） → 翻译异常 → 按归属规则归还连接。
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Sequence, TypeVar

from .db import ConnectionProvider
from .errors import DataAccessError, translate
from .statement import (
    PreparedStatement,
    QueryCallback,
    RowMapper,
    SqlRequest,
    StatementCallback,
    StatementExecutor,
    single_result,
    update_callback,
)
from .transaction import TransactionContext, get_connection, release_connection

logger = logging.getLogger(__name__)

T = TypeVar("T")


class QueryTemplate:
    def __init__(self, data_source: ConnectionProvider, statement_executor: StatementExecutor | None = None):
        self.data_source = data_source
        self.statement_executor = statement_executor or StatementExecutor()

    def update(self, sql: str, params: Sequence[Any] = (), context: TransactionContext | None = None) -> int:
        return self.execute(sql, update_callback, params, context)

    def query_for_list(self, sql: str, row_mapper: RowMapper[T], params: Sequence[Any] = (),
                       context: TransactionContext | None = None) -> list[T]:
        return self.execute(sql, QueryCallback(self.statement_executor, row_mapper), params, context)

    def query_for_object(self, sql: str, row_mapper: RowMapper[T], params: Sequence[Any] = (),
                         context: TransactionContext | None = None) -> T | None:
        """0 行返回 None，1 行返回该值，多行抛 IncorrectResultSizeError"""
        return single_result(self.query_for_list(sql, row_mapper, params, context))

    def execute(self, sql: str, callback: StatementCallback[T], params: Sequence[Any] = (),
                context: TransactionContext | None = None) -> T:
        request = SqlRequest.of(sql, params)
        return self._with_connection(context, lambda conn: self._run(conn, request, callback))

    def batch_update(self, sql: str, params_list: Sequence[Sequence[Any]],
                     context: TransactionContext | None = None) -> list[int]:
        """
        同一条 SQL 逐行参数执行，共用一个连接；遇到第一处失败即停止。
        不在事务中时每行各自提交，需要原子性请在 TransactionManager.begin() 内调用。
        """
        requests = [SqlRequest.of(sql, p) for p in params_list]

        def run_all(conn) -> list[int]:
            return [self._run(conn, req, update_callback) for req in requests]

        return self._with_connection(context, run_all)

    def _with_connection(self, context: TransactionContext | None, work: Callable[[Any], T]) -> T:
        conn = get_connection(self.data_source, context)
        try:
            result = work(conn)
        except BaseException:
            # 主异常优先：归还失败只记录，不覆盖
            try:
                release_connection(conn, self.data_source, context)
            except DataAccessError:
                pass
            raise
        release_connection(conn, self.data_source, context)
        return result

    def _run(self, conn, request: SqlRequest, callback: StatementCallback[T]) -> T:
        try:
            with self._create_statement(conn, request) as statement:
                return callback(statement)
        except DataAccessError as e:
            logger.error(f"{e.message} [SQL: {request.sql}]")
            raise
        except Exception as e:
            logger.error(f"{e} [SQL: {request.sql}]")
            raise translate(e, request.sql) from e

    def _create_statement(self, conn, request: SqlRequest) -> PreparedStatement:
        statement = PreparedStatement(conn, request.sql)
        try:
            statement.bind_all(request.params)
        except BaseException as e:
            statement.__exit__(type(e), e, e.__traceback__)
            raise
        return statement
