"""
事务上下文与连接借用规则

TransactionContext 是显式传递的上下文值：同一逻辑事务中的所有语句通过它
拿到同一个连接。QueryTemplate 只读取上下文，绑定/解绑只由 TransactionManager 完成。
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator

from .db import ConnectionProvider
from .errors import DataAccessError, translate

logger = logging.getLogger(__name__)


class TransactionContext:
    def __init__(self):
        # id(provider) -> (provider, connection)；保留 provider 引用使 id 不被复用
        self._bound: dict[int, tuple[Any, Any]] = {}

    def has_bound_connection(self, provider: ConnectionProvider) -> bool:
        return id(provider) in self._bound

    def get_bound_connection(self, provider: ConnectionProvider):
        entry = self._bound.get(id(provider))
        if entry is None:
            raise DataAccessError(f"no connection bound for {provider!r}")
        return entry[1]

    def is_bound(self, conn, provider: ConnectionProvider) -> bool:
        entry = self._bound.get(id(provider))
        return entry is not None and entry[1] is conn

    def bind(self, provider: ConnectionProvider, conn) -> None:
        if id(provider) in self._bound:
            raise DataAccessError(f"a connection is already bound for {provider!r}")
        self._bound[id(provider)] = (provider, conn)

    def unbind(self, provider: ConnectionProvider):
        entry = self._bound.pop(id(provider), None)
        if entry is None:
            raise DataAccessError(f"no connection bound for {provider!r}")
        return entry[1]


def get_connection(provider: ConnectionProvider, context: TransactionContext | None = None):
    """事务中已绑定则借用，否则从 provider 取新连接（调用方负责归还）"""
    if context is not None and context.has_bound_connection(provider):
        return context.get_bound_connection(provider)
    try:
        return provider.get_connection()
    except Exception as e:
        raise translate(e) from e


def release_connection(conn, provider: ConnectionProvider, context: TransactionContext | None = None) -> None:
    """借用的连接不归还；自有连接交还 provider。失败时记录日志并抛出 DataAccessError。"""
    if conn is None:
        return
    if context is not None and context.is_bound(conn, provider):
        return
    try:
        provider.release_connection(conn)
    except Exception as e:
        logger.warning(f"归还连接失败 {provider!r}: {e}")
        raise translate(e) from e


class TransactionManager:
    def __init__(self, provider: ConnectionProvider):
        self.provider = provider

    @contextmanager
    def begin(self, context: TransactionContext | None = None) -> Iterator[TransactionContext]:
        ctx = context if context is not None else TransactionContext()
        if ctx.has_bound_connection(self.provider):
            # 加入外层事务：提交/回滚/归还都由外层负责
            yield ctx
            return

        conn = get_connection(self.provider)
        try:
            conn.execute("BEGIN")
        except Exception as e:
            release_connection(conn, self.provider)
            raise translate(e) from e
        ctx.bind(self.provider, conn)
        try:
            yield ctx
        except BaseException:
            try:
                conn.rollback()
            except Exception as e:
                logger.warning(f"回滚失败: {e}")
            self._finish(ctx, conn, primary_error=True)
            raise
        try:
            conn.commit()
        except Exception as e:
            logger.error(f"提交失败: {e}")
            try:
                conn.rollback()
            except Exception as e2:
                logger.warning(f"回滚失败: {e2}")
            self._finish(ctx, conn, primary_error=True)
            raise translate(e) from e
        self._finish(ctx, conn, primary_error=False)

    def _finish(self, ctx: TransactionContext, conn, primary_error: bool) -> None:
        ctx.unbind(self.provider)
        try:
            release_connection(conn, self.provider)
        except DataAccessError:
            if not primary_error:
                raise
