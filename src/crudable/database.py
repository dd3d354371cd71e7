"""
Database engine and store access.

This module is intentionally small and test-friendly:
- Defaults to SQLite for local dev
- Supports any SQLAlchemy URL via CRUDABLE_DATABASE_URL

Every statement goes through ``Store``: literal values are always bound
parameters, identifiers are quoted by the dialect.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Generator, List, Mapping, Optional, TypeVar

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Connection, Engine

from crudable.config import get_settings

if TYPE_CHECKING:
    from crudable.meta_engine.services.catalog import TableCatalog

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_database_url() -> str:
    settings = get_settings()
    return settings.DATABASE_URL


def create_db_engine(database_url: Optional[str] = None, *, echo: bool = False) -> Engine:
    url = database_url or get_database_url()

    connect_args: dict = {}
    if "sqlite" in url:
        connect_args["check_same_thread"] = False

    if url.startswith("sqlite:///:memory:") or url == "sqlite://":
        from sqlalchemy.pool import StaticPool

        engine = create_engine(
            url,
            echo=echo,
            connect_args=connect_args,
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            url,
            echo=echo,
            pool_pre_ping=True,
            pool_recycle=3600,
            connect_args=connect_args,
        )

    if "sqlite" in url:

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, _connection_record):  # pragma: no cover
            # Let SQLAlchemy emit BEGIN itself so SAVEPOINT works with pysqlite
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):  # pragma: no cover
            conn.exec_driver_sql("BEGIN")

    return engine


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class _Executor:
    """Statement helpers shared by ``Store`` and ``Transaction``."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def quote(self, identifier: str) -> str:
        return self.engine.dialect.identifier_preparer.quote_identifier(identifier)

    def _query(
        self, conn: Connection, sql: str, params: Optional[Mapping[str, Any]]
    ) -> List[Dict[str, Any]]:
        logger.debug("query: %s %s", sql, params)
        result = conn.execute(text(sql), dict(params or {}))
        return [dict(row) for row in result.mappings()]

    def _execute(self, conn: Connection, sql: str, params: Optional[Mapping[str, Any]]) -> int:
        logger.debug("execute: %s %s", sql, params)
        result = conn.execute(text(sql), dict(params or {}))
        return result.rowcount

    def _insert(self, conn: Connection, table: str, values: Mapping[str, Any]) -> Any:
        columns = list(values.keys())
        params = {f"v_{i}": values[c] for i, c in enumerate(columns)}
        column_sql = ", ".join(self.quote(c) for c in columns)
        value_sql = ", ".join(f":v_{i}" for i in range(len(columns)))
        sql = f"INSERT INTO {self.quote(table)} ({column_sql}) VALUES ({value_sql})"
        if self.engine.dialect.insert_returning:
            sql += f" RETURNING {self.quote('id')}"
            logger.debug("insert: %s %s", sql, params)
            return conn.execute(text(sql), params).scalar_one()
        logger.debug("insert: %s %s", sql, params)
        return conn.execute(text(sql), params).lastrowid


class Transaction(_Executor):
    """Statements bound to one connection inside an open transaction."""

    def __init__(self, engine: Engine, connection: Connection):
        super().__init__(engine)
        self.connection = connection

    def query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        return self._query(self.connection, sql, params)

    def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> int:
        return self._execute(self.connection, sql, params)

    def insert(self, table: str, values: Mapping[str, Any]) -> Any:
        return self._insert(self.connection, table, values)

    @contextmanager
    def savepoint(self) -> Generator["Transaction", None, None]:
        """Nested transaction; an exception rolls back only the savepoint."""
        nested = self.connection.begin_nested()
        try:
            yield self
            nested.commit()
        except Exception:
            nested.rollback()
            raise


class Store(_Executor):
    """
    Borrow-per-call access to the relational store.

    Reads use a short-lived connection each; ``transaction()`` holds one
    connection for the whole block and always releases it.
    """

    def query(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            return self._query(conn, sql, params)

    def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> int:
        with self.transaction() as tx:
            return tx.execute(sql, params)

    def insert(self, table: str, values: Mapping[str, Any]) -> Any:
        with self.transaction() as tx:
            return tx.insert(table, values)

    @contextmanager
    def transaction(self) -> Generator[Transaction, None, None]:
        conn = self.engine.connect()
        trans = conn.begin()
        try:
            yield Transaction(self.engine, conn)
            trans.commit()
        except Exception:
            trans.rollback()
            raise
        finally:
            conn.close()

    def with_transaction(self, fn: Callable[[Transaction], T]) -> T:
        with self.transaction() as tx:
            return fn(tx)


_SQL_TYPES: Dict[str, Callable[[], Any]] = {
    "integer": Integer,
    "int": Integer,
    "number": Float,
    "float": Float,
    "decimal": Float,
    "boolean": Boolean,
    "varchar": lambda: String(255),
    "string": lambda: String(255),
    "enum": lambda: String(255),
    "text": Text,
    "date": Date,
    "datetime": DateTime,
}


def build_metadata(catalog: "TableCatalog") -> MetaData:
    """SQLAlchemy ``MetaData`` mirroring the physical columns of every table."""
    metadata = MetaData()
    for table_name in catalog.table_names():
        fields = catalog.fields_of(table_name)
        columns = [
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("ownerId", Integer, nullable=True, index=True),
            Column("granted", String(255), nullable=True, default="draft"),
            Column("createdAt", DateTime, nullable=True),
            Column("updatedAt", DateTime, nullable=True),
        ]
        system = {c.name for c in columns}
        for name in catalog.physical_fields(table_name):
            if name in system:
                continue
            field_def = fields[name]
            sql_type = _SQL_TYPES.get(field_def.type.lower(), lambda: String(255))()
            if field_def.relation:
                sql_type = Integer()
            columns.append(
                Column(name, sql_type, nullable=not field_def.required, index=bool(field_def.relation))
            )
        Table(table_name, metadata, *columns)
    return metadata


def init_db(store: Store, catalog: "TableCatalog") -> List[str]:
    """
    Create missing tables for the schema.

    Existing tables are left untouched; returns the names of the tables that
    exist afterwards.
    """
    metadata = build_metadata(catalog)
    metadata.create_all(bind=store.engine, checkfirst=True)
    logger.info("Database initialized with %d tables", len(metadata.tables))
    return sorted(metadata.tables.keys())
