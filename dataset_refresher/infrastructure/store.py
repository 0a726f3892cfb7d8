"""MariaDB/MySQL implementation of the Store port."""

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import text
from sqlalchemy.dialects import mysql
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from ..application.domain import (
    DecompressedSource,
    IndexDefinition,
    IndexKind,
    RefreshMetadata,
    Store,
)
from ..application.exceptions import StoreError

from .base_client import require_credential
from .decorators import retry_until_store_ready
from .store_models import MetadataRow

_preparer = mysql.dialect().identifier_preparer
_COMMENT_LINE = re.compile(r"^\s*--.*$", re.MULTILINE)


def quote(identifier: str) -> str:
    return _preparer.quote_identifier(identifier)


def render_add_index(table: str, index: IndexDefinition) -> str:
    """Render the DDL that recreates `index` on `table` verbatim."""
    kind = ""
    if index.unique:
        kind = "UNIQUE "
    if index.kind is IndexKind.FULLTEXT:
        kind += "FULLTEXT "
    columns = ", ".join(
        quote(column.name)
        + (f"({column.prefix_length})" if column.prefix_length else "")
        for column in index.columns
    )
    return (
        f"ALTER TABLE {quote(table)} "
        f"ADD {kind}INDEX {quote(index.name)} ({columns})"
    )


def render_bulk_load(table: str, columns: Sequence[str]) -> str:
    """Render a LOAD DATA statement for a headered TSV file."""
    column_list = ", ".join(quote(column) for column in columns)
    return (
        f"LOAD DATA LOCAL INFILE :path INTO TABLE {quote(table)} "
        f"CHARACTER SET utf8mb4 "
        f"FIELDS TERMINATED BY '\\t' "
        f"LINES TERMINATED BY '\\n' "
        f"IGNORE 1 LINES ({column_list})"
    )


def split_sql_script(script: str) -> List[str]:
    """Split a schema script into statements, dropping comment lines."""
    stripped = _COMMENT_LINE.sub("", script)
    return [s.strip() for s in stripped.split(";") if s.strip()]


def create_store_engine(
    host: str,
    port: int,
    user: str,
    password: Optional[str],
    database: str,
    pool_size: int = 2,
) -> AsyncEngine:
    """
    Build the async engine for the store.

    Raises:
        ConfigurationError: If the password is missing or a placeholder.
    """
    url = URL.create(
        "mysql+aiomysql",
        username=user,
        password=require_credential("store", password),
        host=host,
        port=int(port),
        database=database,
        query={"charset": "utf8mb4"},
    )
    return create_async_engine(
        url,
        pool_size=pool_size,
        pool_pre_ping=True,
        connect_args={"local_infile": True},
    )


class MariaDbStore(Store):
    """A store adapter that issues DDL/DML through an async SQLAlchemy engine."""

    def __init__(
        self,
        engine: AsyncEngine,
        schema_file: Path,
        metadata_table: str = "imdb_metadata",
    ):
        """Initializes the store adapter."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.engine = engine
        self.schema_file = Path(schema_file)
        self.metadata_table = metadata_table

    async def _execute(self, *statements: str, **params) -> None:
        """Run statements in order on one connection, in one transaction."""
        try:
            async with self.engine.begin() as conn:
                for statement in statements:
                    await conn.execute(text(statement), params)
        except SQLAlchemyError as e:
            raise StoreError(f"{type(e).__name__}: {e}") from e

    async def _fetch(self, statement: str, **params) -> List[Dict[str, Any]]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(text(statement), params)
                return [dict(row._mapping) for row in result]
        except SQLAlchemyError as e:
            raise StoreError(f"{type(e).__name__}: {e}") from e

    @retry_until_store_ready
    async def _ping(self):
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def wait_until_ready(self):
        self.logger.info("Waiting for the store...")
        try:
            await self._ping()
        except (SQLAlchemyError, OSError) as e:
            raise StoreError(f"Store not available: {e}") from e
        self.logger.info("Store is ready")

    async def initialize_schema(self):
        self.logger.info(f"Initializing schema from {self.schema_file.name}...")
        statements = split_sql_script(self.schema_file.read_text("utf-8"))
        await self._execute(*statements)

    async def estimate_row_count(self, table: str) -> int:
        rows = await self._fetch(
            "SELECT COALESCE(table_rows, 0) AS estimate "
            "FROM information_schema.tables "
            "WHERE table_schema = DATABASE() AND table_name = :table",
            table=table,
        )
        return int(rows[0]["estimate"]) if rows else 0

    async def exact_row_count(self, table: str) -> int:
        rows = await self._fetch(f"SELECT COUNT(*) AS total FROM {quote(table)}")
        return int(rows[0]["total"])

    async def table_columns(self, table: str) -> List[str]:
        rows = await self._fetch(
            "SELECT COLUMN_NAME AS column_name "
            "FROM information_schema.columns "
            "WHERE table_schema = DATABASE() AND table_name = :table "
            "ORDER BY ORDINAL_POSITION",
            table=table,
        )
        return [row["column_name"] for row in rows]

    async def index_catalog(self, table: str) -> List[Dict[str, Any]]:
        return await self._fetch(
            "SELECT INDEX_NAME AS index_name, NON_UNIQUE AS non_unique, "
            "INDEX_TYPE AS index_type, SEQ_IN_INDEX AS seq_in_index, "
            "COLUMN_NAME AS column_name, SUB_PART AS sub_part "
            "FROM information_schema.statistics "
            "WHERE table_schema = DATABASE() AND table_name = :table "
            "ORDER BY INDEX_NAME, SEQ_IN_INDEX",
            table=table,
        )

    async def clone_structure(self, source: str, target: str):
        await self._execute(
            f"DROP TABLE IF EXISTS {quote(target)}",
            f"CREATE TABLE {quote(target)} LIKE {quote(source)}",
        )

    async def drop_index(self, table: str, index_name: str):
        await self._execute(
            f"ALTER TABLE {quote(table)} DROP INDEX {quote(index_name)}"
        )

    async def add_index(self, table: str, index: IndexDefinition):
        await self._execute(render_add_index(table, index))

    async def bulk_load(self, table: str, source: DecompressedSource):
        """
        Stream a TSV into `table` with uniqueness and foreign key checks
        suspended for this session only.

        The session flags are restored before the connection goes back to
        the pool.
        """
        statement = render_bulk_load(table, source.columns)
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SET SESSION UNIQUE_CHECKS = 0"))
                await conn.execute(text("SET SESSION FOREIGN_KEY_CHECKS = 0"))
                try:
                    await conn.execute(
                        text(statement), {"path": str(source.path)}
                    )
                    await conn.commit()
                finally:
                    await conn.execute(text("SET SESSION UNIQUE_CHECKS = 1"))
                    await conn.execute(
                        text("SET SESSION FOREIGN_KEY_CHECKS = 1")
                    )
        except SQLAlchemyError as e:
            raise StoreError(f"{type(e).__name__}: {e}") from e

    async def rename_tables(self, renames: Sequence[Tuple[str, str]]):
        clauses = ", ".join(
            f"{quote(old)} TO {quote(new)}" for old, new in renames
        )
        await self._execute(f"RENAME TABLE {clauses}")

    async def drop_table(self, table: str):
        await self._execute(f"DROP TABLE IF EXISTS {quote(table)}")

    async def read_metadata(self) -> RefreshMetadata:
        rows = await self._fetch(
            f"SELECT status, last_updated, next_update, "
            f"update_interval_days, records_loaded "
            f"FROM {quote(self.metadata_table)} WHERE id = 1"
        )
        row = MetadataRow.model_validate(rows[0] if rows else {})
        return RefreshMetadata(**row.model_dump())

    async def write_metadata(self, metadata: RefreshMetadata):
        await self._execute(
            f"UPDATE {quote(self.metadata_table)} SET "
            f"status = :status, last_updated = :last_updated, "
            f"next_update = :next_update, "
            f"update_interval_days = :update_interval_days, "
            f"records_loaded = :records_loaded "
            f"WHERE id = 1",
            status=metadata.status.value,
            last_updated=metadata.last_updated,
            next_update=metadata.next_update,
            update_interval_days=metadata.update_interval_days,
            records_loaded=metadata.records_loaded,
        )

    async def close(self):
        await self.engine.dispose()
