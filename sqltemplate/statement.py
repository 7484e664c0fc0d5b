from __future__ import annotations

# sqltemplate/statement.py
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Protocol, Sequence, TypeVar

from .errors import DataAccessError, IncorrectResultSizeError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 行映射：每行调用一次，行对象在调用结束后不得保留
RowMapper = Callable[[Any], T]


@dataclass(frozen=True)
class SqlRequest:
    sql: str
    params: tuple = ()

    @classmethod
    def of(cls, sql: str, params: Sequence[Any] | None = None) -> "SqlRequest":
        if params is None:
            params = ()
        if isinstance(params, (str, bytes, bytearray, memoryview, dict)) or not isinstance(params, Sequence):
            raise DataAccessError(
                f"params must be an ordered sequence, got {type(params).__name__}"
            )
        return cls(sql, tuple(params))

    @property
    def bind_count(self) -> int:
        return len(self.params)


class PreparedStatement:
    """
    绑定在单个连接与单条 SQL 上的语句句柄（DB-API cursor 封装）。
    参数按 1 起始的序号绑定，执行时按序号顺序整体交给驱动。
    """

    def __init__(self, connection, sql: str):
        self.sql = sql
        self._cursor = connection.cursor()
        self._params: dict[int, Any] = {}
        self.closed = False

    def set_object(self, index: int, value: Any) -> None:
        if index < 1:
            raise DataAccessError(f"parameter index must be >= 1, got {index}")
        self._params[index] = value

    def bind_all(self, params: Sequence[Any]) -> None:
        for i, value in enumerate(params):
            self.set_object(i + 1, value)

    @property
    def parameter_count(self) -> int:
        return len(self._params)

    def bound_parameters(self) -> tuple:
        n = len(self._params)
        if n and max(self._params) != n:
            missing = [i for i in range(1, max(self._params) + 1) if i not in self._params]
            raise DataAccessError(f"parameters not bound at index {missing}")
        return tuple(self._params[i] for i in range(1, n + 1))

    def execute_update(self) -> int:
        self._cursor.execute(self.sql, self.bound_parameters())
        # DDL 等语句驱动可能返回 -1
        return max(self._cursor.rowcount, 0)

    def execute_query(self) -> Iterator[Any]:
        self._cursor.execute(self.sql, self.bound_parameters())
        while True:
            row = self._cursor.fetchone()
            if row is None:
                return
            yield row

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._cursor.close()

    def __enter__(self) -> "PreparedStatement":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.close()
            return
        # 主异常优先：关闭失败只记录
        try:
            self.close()
        except Exception as e:
            logger.warning(f"关闭语句失败 [SQL: {self.sql}]: {e}")


class StatementCallback(Protocol[T]):
    def __call__(self, statement: PreparedStatement) -> T: ...


class StatementExecutor:
    def execute(self, statement: PreparedStatement, row_mapper: RowMapper[T]) -> list[T]:
        results: list[T] = []
        rows = statement.execute_query()
        row_num = 0
        while True:
            try:
                row = next(rows)
            except StopIteration:
                break
            except DataAccessError:
                raise
            except Exception as e:
                raise DataAccessError(f"cursor read failed at row {row_num}: {e}", cause=e) from e
            try:
                results.append(row_mapper(row))
            except DataAccessError:
                raise
            except Exception as e:
                raise DataAccessError(f"row mapper failed at row {row_num}: {e}", cause=e) from e
            row_num += 1
        return results


def update_callback(statement: PreparedStatement) -> int:
    return statement.execute_update()


class QueryCallback:
    def __init__(self, executor: StatementExecutor, row_mapper: RowMapper[T]):
        self.executor = executor
        self.row_mapper = row_mapper

    def __call__(self, statement: PreparedStatement) -> list:
        return self.executor.execute(statement, self.row_mapper)


def single_result(results: Sequence[T]) -> T | None:
    if len(results) > 1:
        raise IncorrectResultSizeError(len(results))
    if not results:
        return None
    return results[0]
