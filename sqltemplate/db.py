from __future__ import annotations

# sqltemplate/db.py
import logging
import os
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Protocol

import yaml
from pydantic import BaseModel, ValidationError

from .errors import DataAccessError

logger = logging.getLogger(__name__)

# DB 路径解析顺序：
# 1) 环境变量 SQLT_DB_PATH（最高优先级）
# 2) config.yaml 的 test_db_path（当检测到测试环境时）
# 3) config.yaml 的 db_path（生产默认）
# 4) 兜底：项目根 sqltemplate.db
_PROJECT_ROOT = os.path.dirname(os.path.dirname(__file__))
_ROOT_DB = os.path.join(_PROJECT_ROOT, "sqltemplate.db")
_CONFIG_PATH = os.path.join(_PROJECT_ROOT, "config.yaml")


class DataSourceConfig(BaseModel):
    db_path: str | None = None
    test_db_path: str | None = None
    foreign_keys: bool = True
    timeout: float = 5.0


def load_config(path: str | None = None) -> DataSourceConfig:
    cfg_path = path or _CONFIG_PATH
    if not os.path.exists(cfg_path):
        return DataSourceConfig()
    try:
        with open(cfg_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"无法读取配置 {cfg_path}: {e}")
        return DataSourceConfig()
    if not isinstance(raw, dict):
        return DataSourceConfig()
    out = {}
    for k in ("db_path", "test_db_path"):
        v = raw.get(k)
        if isinstance(v, str) and v.strip():
            out[k] = v.strip()
    for k in ("foreign_keys", "timeout"):
        if raw.get(k) is not None:
            out[k] = raw[k]
    try:
        return DataSourceConfig(**out)
    except ValidationError as e:
        logger.warning(f"配置值无效 {cfg_path}: {e}")
        return DataSourceConfig()


def get_db_path(config: DataSourceConfig | None = None) -> str:
    cfg = config or load_config()
    env_path = os.environ.get("SQLT_DB_PATH")
    is_test = (os.environ.get("APP_ENV") == "test") or (os.environ.get("PYTEST_CURRENT_TEST") is not None)

    if env_path:
        path = env_path
    elif is_test and cfg.test_db_path:
        path = cfg.test_db_path
    elif cfg.db_path:
        path = cfg.db_path
    else:
        path = _ROOT_DB

    # 确保目录存在
    dirn = os.path.dirname(path) or "."
    os.makedirs(dirn, exist_ok=True)
    return path


class ConnectionProvider(Protocol):
    def get_connection(self): ...
    def release_connection(self, conn) -> None: ...


class SqliteDataSource:
    """
    SQLite 连接提供者。每次 get_connection() 打开一个新连接，
    release_connection() 负责关闭。本身不做连接池。
    """

    def __init__(self, db_path: str | None = None, config: DataSourceConfig | None = None):
        self.config = config or load_config()
        self._db_path = db_path

    @property
    def db_path(self) -> str:
        # 延迟解析，便于测试在实例化之后再设置 SQLT_DB_PATH
        return self._db_path or get_db_path(self.config)

    def get_connection(self) -> sqlite3.Connection:
        path = self.db_path
        try:
            conn = sqlite3.connect(
                path,
                timeout=self.config.timeout,
                detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
                check_same_thread=False,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            logger.error(f"打开数据库失败 {path}: {e}")
            raise DataAccessError(f"cannot open database: {path}", cause=e) from e
        try:
            if self.config.foreign_keys:
                conn.execute("PRAGMA foreign_keys = ON;")
            conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            conn.close()
            raise DataAccessError(f"cannot initialise connection: {path}", cause=e) from e
        return conn

    def release_connection(self, conn: sqlite3.Connection) -> None:
        conn.close()

    def __repr__(self) -> str:
        return f"SqliteDataSource({self._db_path or '<resolved>'!s})"


@contextmanager
def get_conn(db_path: str | None = None) -> Iterator[sqlite3.Connection]:
    """
    获取 SQLite 连接。优先使用显式传入的 db_path，否则走 get_db_path()。
    打开 foreign_keys，设置 row_factory 为 Row。
    """
    ds = SqliteDataSource(db_path)
    conn = ds.get_connection()
    try:
        yield conn
    finally:
        ds.release_connection(conn)
