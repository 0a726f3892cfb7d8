"""
Shadow-table bulk loading.

A refresh never writes into the production table. Data goes into a sibling
`<table>_new` created with the same columns and primary key but without
secondary indexes; the indexes are rebuilt once all rows are in.
"""

import logging
import time
from pathlib import Path
from typing import List, Sequence

from .domain import (
    DatasetSpec,
    DecompressedSource,
    Decompressor,
    IndexDefinition,
    SchemaIntrospector,
    Store,
    TableGeneration,
)
from .exceptions import LoadError, ProcessingError, StoreError


class ShadowLoader:
    """Loads one dataset into its shadow table and rebuilds its indexes."""

    def __init__(
        self,
        store: Store,
        introspector: SchemaIntrospector,
        decompressor: Decompressor,
        work_dir: Path,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.store = store
        self.introspector = introspector
        self.decompressor = decompressor
        self.work_dir = Path(work_dir)

    async def _create_shadow(self, production: str, shadow: str):
        """Created: clone the production structure, minus secondary indexes."""
        self.logger.info(f"  Creating shadow table {shadow} (no secondary indexes)...")
        await self.store.clone_structure(production, shadow)
        for index in await self.introspector.capture_indexes(shadow):
            await self.store.drop_index(shadow, index.name)

    async def _bulk_insert(
        self, dataset: DatasetSpec, shadow: str
    ) -> DecompressedSource:
        """BulkInserted: stream the decompressed artifact into the shadow."""
        destination = self.work_dir / dataset.artifact.path.name
        destination = destination.with_suffix("")
        source = await self.decompressor.decompress(
            dataset.artifact, destination
        )
        try:
            known = set(await self.store.table_columns(shadow))
            unknown = [c for c in source.columns if c not in known]
            if unknown:
                raise LoadError(
                    dataset.table,
                    "bulk insert",
                    f"header columns not in table: {', '.join(unknown)}",
                )

            self.logger.info(
                f"  Loading {source.row_count} rows into {shadow} "
                f"(checks disabled, no secondary indexes)..."
            )
            started = time.monotonic()
            await self.store.bulk_load(shadow, source)
            elapsed = time.monotonic() - started
            self.logger.info(
                f"  Data loaded in {elapsed:.0f}s "
                f"(~{source.row_count / (elapsed + 1):.0f} rows/sec)"
            )
        finally:
            source.path.unlink(missing_ok=True)
        return source

    async def _rebuild_indexes(
        self, table: str, shadow: str, indexes: Sequence[IndexDefinition]
    ):
        """IndexesRebuilt: replay captured definitions and check fidelity."""
        if indexes:
            self.logger.info(f"  Creating {len(indexes)} indexes on {shadow}...")
            started = time.monotonic()
            for index in indexes:
                await self.store.add_index(shadow, index)
            self.logger.info(
                f"  Indexes created in {time.monotonic() - started:.0f}s"
            )

        rebuilt = await self.introspector.capture_indexes(shadow)
        if set(rebuilt) != set(indexes):
            raise LoadError(
                table,
                "index rebuild",
                f"shadow indexes {sorted(i.name for i in rebuilt)} do not "
                f"match production {sorted(i.name for i in indexes)}",
            )

    async def load(
        self, dataset: DatasetSpec, indexes: List[IndexDefinition]
    ) -> int:
        """
        Populate `<table>_new` from the dataset's artifact.

        On failure the shadow table is left in place for inspection; the
        production table is never touched.

        Args:
            dataset: The dataset to load.
            indexes: Index definitions captured from the production table.

        Returns:
            The exact number of rows in the populated shadow table.

        Raises:
            LoadError: If creation, decompression, insertion or index
                       rebuild fails.
        """

        production = dataset.table_name(TableGeneration.PRODUCTION)
        shadow = dataset.table_name(TableGeneration.SHADOW)
        self.logger.info(f"Loading {dataset.artifact.path.name} into {production}...")

        phase = "shadow creation"
        try:
            await self._create_shadow(production, shadow)
            phase = "bulk insert"
            await self._bulk_insert(dataset, shadow)
            phase = "index rebuild"
            await self._rebuild_indexes(production, shadow, indexes)
            phase = "row count"
            rows = await self.store.exact_row_count(shadow)
        except (StoreError, ProcessingError) as e:
            raise LoadError(production, phase, str(e)) from e

        self.logger.info(f"  Shadow table {shadow} holds {rows} rows")
        return rows
