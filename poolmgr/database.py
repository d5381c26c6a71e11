from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from poolmgr.models import Base


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    kwargs = {}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            # in-memory databases live on a single shared connection
            kwargs["poolclass"] = StaticPool

    engine = create_engine(database_url, **kwargs)
    if url.get_backend_name() == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine):
    if engine.url.get_backend_name() == "sqlite" and engine.url.database not in (None, "", ":memory:"):
        Path(engine.url.database).parent.mkdir(parents=True, exist_ok=True)

    Base.metadata.create_all(bind=engine)

    inspector = inspect(engine)

    # Databases created before chunking/large-file support
    if "storage_pools" in inspector.get_table_names():
        pool_cols = {col["name"] for col in inspector.get_columns("storage_pools")}
        with engine.begin() as conn:
            if "enable_chunker" not in pool_cols:
                conn.execute(text("ALTER TABLE storage_pools ADD COLUMN enable_chunker BOOLEAN DEFAULT 0"))
            if "allow_large_files" not in pool_cols:
                conn.execute(text("ALTER TABLE storage_pools ADD COLUMN allow_large_files BOOLEAN DEFAULT 0"))
            if "chunk_size" not in pool_cols:
                conn.execute(text("ALTER TABLE storage_pools ADD COLUMN chunk_size VARCHAR DEFAULT '100M'"))

    if "accounts" in inspector.get_table_names():
        account_cols = {col["name"] for col in inspector.get_columns("accounts")}
        with engine.begin() as conn:
            if "updated_at" not in account_cols:
                conn.execute(text("ALTER TABLE accounts ADD COLUMN updated_at DATETIME"))
                conn.execute(text("UPDATE accounts SET updated_at = created_at WHERE updated_at IS NULL"))
