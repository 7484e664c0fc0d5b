"""
数据访问异常
所有驱动层错误在离开 QueryTemplate 之前统一翻译为 DataAccessError。
"""
from __future__ import annotations


class DataAccessError(Exception):
    def __init__(self, message: str | None = None, cause: BaseException | None = None):
        if message is None:
            message = str(cause) if cause is not None else "data access failure"
        super().__init__(message)
        self.message = message
        self.cause = cause


class IncorrectResultSizeError(DataAccessError):
    """查询结果行数不符合预期（至多一行却返回了多行）"""

    def __init__(self, actual: int):
        super().__init__(f"at most one result expected, got {actual}")
        self.expected = 1
        self.actual = actual


def translate(exc: BaseException, sql: str | None = None) -> DataAccessError:
    if isinstance(exc, DataAccessError):
        return exc
    detail = str(exc) or type(exc).__name__
    msg = f"{detail} [SQL: {sql}]" if sql else detail
    return DataAccessError(msg, cause=exc)
