"""Shared fixtures: an in-memory Store and helpers to build datasets."""

import asyncio
import copy
import dataclasses
import gzip
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from dataset_refresher.application.domain import (
    DatasetSpec,
    DecompressedSource,
    Fetcher,
    IndexColumn,
    IndexDefinition,
    IndexKind,
    RefreshMetadata,
    SourceArtifact,
    Store,
)
from dataset_refresher.application.exceptions import FetchError, StoreError
from dataset_refresher.application.freshness import FreshnessGate
from dataset_refresher.application.loader import ShadowLoader
from dataset_refresher.application.metadata import RefreshMetadataHandle
from dataset_refresher.application.service import (
    RefreshOrchestrator,
    TableRefreshPipeline,
)
from dataset_refresher.application.swapper import Swapper
from dataset_refresher.infrastructure.introspection import CatalogIntrospector
from dataset_refresher.infrastructure.processing import (
    StreamValidator,
    TsvDecompressor,
)


TITLE_COLUMNS = ("tconst", "primaryTitle", "startYear")

TITLE_INDEXES = (
    IndexDefinition(
        "ft_primaryTitle",
        unique=False,
        kind=IndexKind.FULLTEXT,
        columns=(IndexColumn("primaryTitle"),),
    ),
    IndexDefinition(
        "idx_primaryTitle",
        unique=False,
        kind=IndexKind.ORDINARY,
        columns=(IndexColumn("primaryTitle", 100),),
    ),
    IndexDefinition(
        "idx_year_title",
        unique=False,
        kind=IndexKind.ORDINARY,
        columns=(IndexColumn("startYear"), IndexColumn("primaryTitle", 50)),
    ),
    IndexDefinition(
        "uq_title_year",
        unique=True,
        kind=IndexKind.ORDINARY,
        columns=(IndexColumn("primaryTitle", 100), IndexColumn("startYear")),
    ),
)


def write_gzip_tsv(path: Path, header: Sequence[str], rows: Sequence[Sequence]):
    """Write a gzip-compressed TSV with a header row."""
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = ["\t".join(header)]
    lines.extend("\t".join(str(v) for v in row) for row in rows)
    with gzip.open(path, "wb") as fh:
        fh.write(("\n".join(lines) + "\n").encode("utf-8"))


def title_rows(count: int, prefix: str = "tt") -> List[Tuple[str, str, int]]:
    return [(f"{prefix}{i:07d}", f"Title {i}", 1990 + i % 30) for i in range(count)]


@dataclasses.dataclass
class FakeTable:
    columns: Tuple[str, ...]
    primary_key: Tuple[str, ...]
    indexes: Dict[str, IndexDefinition] = dataclasses.field(default_factory=dict)
    rows: Dict[tuple, tuple] = dataclasses.field(default_factory=dict)


class FakeStore(Store):
    """
    In-memory Store. Renames are applied without yielding to the event loop,
    so they are atomic for any concurrently running task.
    """

    def __init__(self):
        self.tables: Dict[str, FakeTable] = {}
        self.metadata = RefreshMetadata()
        self.status_history = []
        self.failures: Dict[Tuple[str, Optional[str]], Exception] = {}
        self.calls: List[Tuple] = []
        self.closed = False

    # --- test helpers ---

    def create_table(
        self,
        name: str,
        columns: Sequence[str] = TITLE_COLUMNS,
        primary_key: Sequence[str] = ("tconst",),
        indexes: Sequence[IndexDefinition] = TITLE_INDEXES,
        rows: Sequence[Sequence] = (),
    ) -> FakeTable:
        table = FakeTable(tuple(columns), tuple(primary_key))
        table.indexes = {index.name: index for index in indexes}
        for row in rows:
            table.rows[self._key(table, row)] = tuple(row)
        self.tables[name] = table
        return table

    def fail(self, operation: str, table: Optional[str] = None, error=None):
        self.failures[(operation, table)] = error or StoreError(
            f"injected {operation} failure"
        )

    def _check(self, operation: str, table: Optional[str] = None):
        self.calls.append((operation, table))
        for key in ((operation, table), (operation, None)):
            if key in self.failures:
                raise self.failures[key]

    def _table(self, name: str) -> FakeTable:
        try:
            return self.tables[name]
        except KeyError:
            raise StoreError(f"Table '{name}' doesn't exist") from None

    @staticmethod
    def _key(table: FakeTable, row: Sequence) -> tuple:
        positions = [table.columns.index(c) for c in table.primary_key]
        return tuple(row[p] for p in positions)

    def count(self, name: str) -> int:
        return len(self.tables[name].rows) if name in self.tables else 0

    # --- Store port ---

    async def wait_until_ready(self):
        self._check("wait_until_ready")

    async def initialize_schema(self):
        self._check("initialize_schema")

    async def estimate_row_count(self, table: str) -> int:
        self._check("estimate_row_count", table)
        return self.count(table)

    async def exact_row_count(self, table: str) -> int:
        self._check("exact_row_count", table)
        return len(self._table(table).rows)

    async def table_columns(self, table: str) -> List[str]:
        self._check("table_columns", table)
        return list(self._table(table).columns)

    async def index_catalog(self, table: str):
        self._check("index_catalog", table)
        fake = self._table(table)
        rows = [
            {
                "index_name": "PRIMARY",
                "non_unique": 0,
                "index_type": "BTREE",
                "seq_in_index": seq,
                "column_name": column,
                "sub_part": None,
            }
            for seq, column in enumerate(fake.primary_key, start=1)
        ]
        for index in fake.indexes.values():
            for seq, column in enumerate(index.columns, start=1):
                rows.append(
                    {
                        "index_name": index.name,
                        "non_unique": 0 if index.unique else 1,
                        "index_type": (
                            "FULLTEXT"
                            if index.kind is IndexKind.FULLTEXT
                            else "BTREE"
                        ),
                        "seq_in_index": seq,
                        "column_name": column.name,
                        "sub_part": column.prefix_length,
                    }
                )
        return list(reversed(rows))

    async def clone_structure(self, source: str, target: str):
        self._check("clone_structure", target)
        original = self._table(source)
        self.tables[target] = FakeTable(
            original.columns, original.primary_key, dict(original.indexes)
        )

    async def drop_index(self, table: str, index_name: str):
        self._check("drop_index", table)
        del self._table(table).indexes[index_name]

    async def add_index(self, table: str, index: IndexDefinition):
        self._check("add_index", table)
        fake = self._table(table)
        if index.name in fake.indexes:
            raise StoreError(f"Duplicate key name '{index.name}'")
        await asyncio.sleep(0)
        fake.indexes[index.name] = index

    async def bulk_load(self, table: str, source: DecompressedSource):
        self._check("bulk_load", table)
        fake = self._table(table)
        positions = [source.columns.index(c) for c in fake.columns]
        with open(source.path, encoding="utf-8") as fh:
            next(fh)
            for line in fh:
                values = line.rstrip("\n").split("\t")
                row = tuple(values[p] for p in positions)
                fake.rows.setdefault(self._key(fake, row), row)
                await asyncio.sleep(0)

    async def rename_tables(self, renames: Sequence[Tuple[str, str]]):
        self._check("rename_tables", renames[0][0])
        tables = dict(self.tables)
        for old, new in renames:
            if old not in tables or new in tables:
                raise StoreError(f"Cannot rename {old} to {new}")
            tables[new] = tables.pop(old)
        self.tables = tables

    async def drop_table(self, table: str):
        self._check("drop_table", table)
        self.tables.pop(table, None)

    async def read_metadata(self) -> RefreshMetadata:
        self._check("read_metadata")
        return copy.copy(self.metadata)

    async def write_metadata(self, metadata: RefreshMetadata):
        self._check("write_metadata")
        self.metadata = copy.copy(metadata)
        self.status_history.append(metadata.status)

    async def close(self):
        self.closed = True


class FakeFetcher(Fetcher):
    """Writes canned artifact content instead of going to the network."""

    def __init__(self, content: Dict[str, Tuple[Sequence[str], Sequence]]):
        self.content = content
        self.fetched: List[str] = []
        self.failing = set()

    async def fetch(self, artifact: SourceArtifact) -> SourceArtifact:
        self.fetched.append(artifact.name)
        if artifact.name in self.failing:
            raise FetchError(f"{artifact.name} unavailable", [artifact.name])
        header, rows = self.content[artifact.name]
        write_gzip_tsv(artifact.path, header, rows)
        return artifact


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def data_dir(tmp_path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def make_dataset(data_dir):
    """Build a DatasetSpec whose artifact lives in the data dir."""

    def _make(name: str, table: Optional[str] = None) -> DatasetSpec:
        file = f"{name}.tsv.gz"
        return DatasetSpec(
            name=name,
            table=table or name.replace(".", "_"),
            artifact=SourceArtifact(
                name=name,
                url=f"https://datasets.example.org/{file}",
                path=data_dir / file,
            ),
        )

    return _make


@pytest.fixture
def build_orchestrator(store, tmp_path):
    """Wire a real orchestrator around the fake store and a given fetcher."""

    def _build(datasets, fetcher, max_age_days=15, fetch_missing=True, **kwargs):
        introspector = CatalogIntrospector(store)
        validator = StreamValidator()
        loader = ShadowLoader(
            store, introspector, TsvDecompressor(), tmp_path / "work"
        )
        return RefreshOrchestrator(
            store=store,
            datasets=datasets,
            gate=FreshnessGate(validator, fetch_missing=fetch_missing),
            fetcher=fetcher,
            pipeline=TableRefreshPipeline(introspector, loader, Swapper(store)),
            metadata=RefreshMetadataHandle(store, max_age_days),
            max_age_days=max_age_days,
            **kwargs,
        )

    return _build
