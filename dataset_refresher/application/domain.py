"""
This module defines the core domain models for the application.

These classes represent the pure, technology-agnostic entities and data
structures that the refresh pipeline operates on, together with the ports
(interfaces) the infrastructure layer implements.
"""

import dataclasses
import datetime
import enum
from pathlib import Path

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple


# --- Domain Models ---

class TableGeneration(enum.Enum):
    """The generations a logical table passes through during a refresh."""

    PRODUCTION = ""
    SHADOW = "_new"
    RETIRING = "_old"


class IndexKind(enum.Enum):
    ORDINARY = "ordinary"
    FULLTEXT = "fulltext"


class RefreshStatus(str, enum.Enum):
    """Pipeline status values persisted in the metadata record."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    DOWNLOAD_FAILED = "download_failed"
    LOADING = "loading"
    COMPLETE = "complete"


@dataclasses.dataclass(frozen=True)
class SourceArtifact:
    """
    A downloadable compressed dataset file and where it lives on disk.

    Age and validity are never stored here; they are always read from the
    local filesystem at decision time.
    """

    name: str
    url: str
    path: Path


@dataclasses.dataclass(frozen=True)
class DatasetSpec:
    """Maps exactly one source artifact onto one target table."""

    name: str
    table: str
    artifact: SourceArtifact

    def table_name(self, generation: TableGeneration) -> str:
        return self.table + generation.value


@dataclasses.dataclass(frozen=True)
class IndexColumn:
    name: str
    prefix_length: Optional[int] = None


@dataclasses.dataclass(frozen=True)
class IndexDefinition:
    """
    A secondary index as captured from the store's catalog.

    Column order is significant and preserved exactly as the engine
    reports it.
    """

    name: str
    unique: bool
    kind: IndexKind
    columns: Tuple[IndexColumn, ...]


@dataclasses.dataclass(frozen=True)
class DecompressedSource:
    """A decompressed TSV ready to be bulk-loaded."""

    path: Path
    columns: Tuple[str, ...]
    row_count: int


@dataclasses.dataclass
class RefreshMetadata:
    """The singleton record exposed to external monitors."""

    status: RefreshStatus = RefreshStatus.PENDING
    last_updated: Optional[datetime.datetime] = None
    next_update: Optional[datetime.datetime] = None
    update_interval_days: Optional[int] = None
    records_loaded: Optional[int] = None


@dataclasses.dataclass
class CycleReport:
    """Outcome of a single refresh cycle."""

    downloaded: bool = False
    loaded: Dict[str, int] = dataclasses.field(default_factory=dict)
    skipped: Dict[str, int] = dataclasses.field(default_factory=dict)
    failed: Dict[str, str] = dataclasses.field(default_factory=dict)
    total_rows: int = 0

    @property
    def succeeded(self) -> bool:
        return not self.failed


# --- Ports (Interfaces) ---

class Fetcher(ABC):
    """A port for retrieving a remote artifact to local storage."""

    @abstractmethod
    async def fetch(self, artifact: SourceArtifact) -> SourceArtifact:
        """
        Downloads one artifact, replacing the local copy only once the new
        file has passed its integrity check.
        Raises FetchError when all attempts fail.
        """
        pass


class ArchiveValidator(ABC):
    """A port for compressed-stream integrity checks."""

    @abstractmethod
    async def verify(self, path: Path):
        """Raises IntegrityError if the archive is not a valid stream."""
        pass

    @abstractmethod
    async def is_valid(self, path: Path) -> bool:
        """Non-raising variant of `verify` used by freshness evaluation."""
        pass

    @abstractmethod
    def mark_verified(self, path: Path):
        """Record that `path` passed verification."""
        pass


class Decompressor(ABC):
    """A port for turning an artifact into a loadable delimited file."""

    @abstractmethod
    async def decompress(
        self, artifact: SourceArtifact, destination: Path
    ) -> DecompressedSource:
        """Raises ProcessingError if the artifact cannot be decompressed."""
        pass


class SchemaIntrospector(ABC):
    """A port for reading a table's secondary index definitions."""

    @abstractmethod
    async def capture_indexes(self, table: str) -> List[IndexDefinition]:
        pass


class Store(ABC):
    """
    A port for the relational store.

    Implementations must provide an atomic multi-table rename, cloning of a
    table's structure, and a bulk-load path with per-session constraint
    checks suspended.
    """

    @abstractmethod
    async def wait_until_ready(self):
        pass

    @abstractmethod
    async def initialize_schema(self):
        pass

    @abstractmethod
    async def estimate_row_count(self, table: str) -> int:
        """Fast row count from storage statistics (0 for missing tables)."""
        pass

    @abstractmethod
    async def exact_row_count(self, table: str) -> int:
        pass

    @abstractmethod
    async def table_columns(self, table: str) -> List[str]:
        pass

    @abstractmethod
    async def index_catalog(self, table: str) -> List[Dict[str, Any]]:
        """Raw index catalog rows, one per indexed column."""
        pass

    @abstractmethod
    async def clone_structure(self, source: str, target: str):
        """Replaces `target` with an empty table shaped like `source`."""
        pass

    @abstractmethod
    async def drop_index(self, table: str, index_name: str):
        pass

    @abstractmethod
    async def add_index(self, table: str, index: IndexDefinition):
        pass

    @abstractmethod
    async def bulk_load(
        self, table: str, source: DecompressedSource
    ):
        pass

    @abstractmethod
    async def rename_tables(self, renames: Sequence[Tuple[str, str]]):
        """Applies all renames as one indivisible operation."""
        pass

    @abstractmethod
    async def drop_table(self, table: str):
        pass

    @abstractmethod
    async def read_metadata(self) -> RefreshMetadata:
        pass

    @abstractmethod
    async def write_metadata(self, metadata: RefreshMetadata):
        pass

    @abstractmethod
    async def close(self):
        pass
