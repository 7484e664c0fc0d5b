import os
import sys
import sqlite3
import pytest
from pathlib import Path

# Ensure project root on sys.path
_THIS_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _THIS_DIR.parent.parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))


@pytest.fixture(scope="session")
def tmp_db_path(tmp_path_factory):
    path = tmp_path_factory.mktemp("db") / "sqltemplate_test.db"
    # Point sqltemplate to this temp DB
    os.environ["SQLT_DB_PATH"] = str(path)
    # Initialize schema
    schema = Path(_PROJECT_ROOT / "schema.sql").read_text(encoding="utf-8")
    conn = sqlite3.connect(str(path))
    try:
        conn.executescript(schema)
        conn.commit()
    finally:
        conn.close()
    return str(path)


@pytest.fixture()
def data_source(tmp_db_path):
    from sqltemplate.db import SqliteDataSource
    return SqliteDataSource(tmp_db_path)


@pytest.fixture()
def template(data_source):
    from sqltemplate.template import QueryTemplate
    return QueryTemplate(data_source)


@pytest.fixture(autouse=True)
def _clean_db(tmp_db_path):
    # Safety: ensure we only ever wipe the temp DB, never a real one
    assert os.environ.get("SQLT_DB_PATH") == tmp_db_path, "Refusing to clean non-temp DB"
    tables = ["transfers", "accounts"]
    conn = sqlite3.connect(tmp_db_path)
    try:
        for t in tables:
            conn.execute(f"DELETE FROM {t}")
        conn.execute("DELETE FROM sqlite_sequence")
        conn.commit()
    finally:
        conn.close()
    yield
