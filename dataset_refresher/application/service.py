"""
The core application service and pipeline, containing pure business logic.

This module defines the main orchestrator (RefreshOrchestrator) for a
refresh cycle and the pipeline (TableRefreshPipeline) that takes a single
table from captured indexes through shadow load to promotion.
"""

import asyncio
import logging
from typing import List, Sequence

from tqdm.contrib.logging import logging_redirect_tqdm

from .domain import *
from .exceptions import FetchError, LoadError, StoreError, SwapError
from .freshness import FreshnessGate
from .loader import ShadowLoader
from .metadata import RefreshMetadataHandle
from .swapper import Swapper

logger = logging.getLogger(__name__)


class TableRefreshPipeline:
    """Encapsulates the full refresh pipeline for a single table."""

    def __init__(
        self,
        introspector: SchemaIntrospector,
        loader: ShadowLoader,
        swapper: Swapper,
    ):
        """Initializes the pipeline with necessary dependencies (ports)."""
        self.logger = logging.getLogger(self.__class__.__name__)
        self.introspector = introspector
        self.loader = loader
        self.swapper = swapper

    async def run(self, dataset: DatasetSpec) -> int:
        """Executes the sequential steps for refreshing one table.

        Args:
            dataset: The dataset whose table is reloaded.

        Returns:
            Rows now live in the production table.
        """

        # Step 1: Introspect (production table -> IndexDefinitions)
        try:
            indexes = await self.introspector.capture_indexes(dataset.table)
        except StoreError as e:
            raise LoadError(dataset.table, "index capture", str(e)) from e

        # Step 2: Load (artifact -> populated, indexed shadow table)
        rows = await self.loader.load(dataset, indexes)

        # Step 3: Swap (shadow -> production, production -> dropped)
        await self.swapper.promote(dataset)

        self.logger.info(f"  Result: {rows} rows now live in {dataset.table}")
        return rows


class RefreshOrchestrator:
    """Sequences freshness, download and per-table loads for one cycle."""

    def __init__(
        self,
        store: Store,
        datasets: Sequence[DatasetSpec],
        gate: FreshnessGate,
        fetcher: Fetcher,
        pipeline: TableRefreshPipeline,
        metadata: RefreshMetadataHandle,
        max_age_days: int,
        concurrent_downloads: int = 1,
        concurrent_loads: int = 1,
    ):
        """Initializes the orchestrator and owns the metadata handle."""
        self.store = store
        self.datasets = list(datasets)
        self.gate = gate
        self.fetcher = fetcher
        self.pipeline = pipeline
        self.metadata = metadata
        self.max_age_days = max_age_days
        self.concurrent_downloads = concurrent_downloads
        self.concurrent_loads = concurrent_loads

    @property
    def artifacts(self) -> List[SourceArtifact]:
        return [dataset.artifact for dataset in self.datasets]

    async def prepare(self):
        """Wait for the store and apply the idempotent schema script."""
        await self.store.wait_until_ready()
        await self.store.initialize_schema()
        self.metadata.invalidate()

    async def _fetch_with_semaphore(
        self, artifact: SourceArtifact, semaphore: asyncio.Semaphore
    ):
        """Wrapper to acquire a semaphore before fetching an artifact."""
        async with semaphore:
            await self.fetcher.fetch(artifact)

    async def _download_all(self):
        """
        Fetch every artifact; fail the phase if any one of them fails.

        Raises:
            FetchError: Naming every artifact that could not be fetched.
        """

        await self.metadata.mark(RefreshStatus.DOWNLOADING)
        semaphore = asyncio.Semaphore(self.concurrent_downloads)

        with logging_redirect_tqdm():
            results = await asyncio.gather(
                *(
                    self._fetch_with_semaphore(artifact, semaphore)
                    for artifact in self.artifacts
                ),
                return_exceptions=True,
            )

        failures = []
        for result in results:
            if isinstance(result, FetchError):
                logger.error(str(result))
                failures.extend(result.artifacts)
            elif isinstance(result, BaseException):
                await self.metadata.mark(RefreshStatus.DOWNLOAD_FAILED)
                raise result

        if failures:
            await self.metadata.mark(RefreshStatus.DOWNLOAD_FAILED)
            raise FetchError(
                f"Some downloads failed: {', '.join(failures)}",
                artifacts=failures,
            )

    async def _plan_loads(self, downloaded: bool, report: CycleReport):
        """Pick the tables to load: all after a download, else empty ones."""
        planned = []
        for dataset in self.datasets:
            current = await self.store.estimate_row_count(dataset.table)
            logger.info(f"Table {dataset.table} has ~{current} rows")
            if not dataset.artifact.path.exists():
                logger.warning(
                    f"Table {dataset.table} cannot be loaded: "
                    f"{dataset.artifact.path.name} is missing"
                )
                report.failed[dataset.table] = "artifact missing; run with --force"
            elif downloaded or current == 0:
                planned.append(dataset)
            else:
                logger.info(
                    f"Table {dataset.table} already has {current} rows "
                    f"- skipping"
                )
                report.skipped[dataset.table] = current
        return planned

    async def _load_with_semaphore(
        self,
        dataset: DatasetSpec,
        semaphore: asyncio.Semaphore,
        report: CycleReport,
    ):
        """Run one table's pipeline, isolating its failure from siblings."""
        async with semaphore:
            try:
                report.loaded[dataset.table] = await self.pipeline.run(dataset)
            except (LoadError, SwapError) as e:
                logger.error(f"Refresh of {dataset.table} failed: {e}")
                report.failed[dataset.table] = str(e)

    async def run_cycle(self, force: bool = False) -> CycleReport:
        """
        Execute one full refresh cycle.

        Args:
            force: Download every artifact regardless of freshness.

        Returns:
            A report of downloaded, loaded, skipped and failed tables.

        Raises:
            FetchError: If the download phase failed; no table is touched.
        """

        logger.info("Starting refresh cycle")
        report = CycleReport()
        await self.prepare()

        stale = await self.gate.needs_download(
            self.artifacts, self.max_age_days, force
        )
        if stale:
            logger.info("Downloading datasets...")
            await self._download_all()
            report.downloaded = True
            logger.info("Fresh download - will reload all tables")

        planned = await self._plan_loads(report.downloaded, report)
        if not planned:
            if report.failed:
                logger.warning(
                    f"Nothing to load; unavailable: {', '.join(sorted(report.failed))}"
                )
            else:
                logger.info(
                    "No action needed: files are fresh and tables populated"
                )
            logger.info("File ages:")
            self.gate.log_ages(self.artifacts)
            report.total_rows = sum(report.skipped.values())
            return report

        logger.info(f"Loading {len(planned)} tables into the store...")
        await self.metadata.mark(RefreshStatus.LOADING)

        semaphore = asyncio.Semaphore(self.concurrent_loads)
        results = await asyncio.gather(
            *(
                self._load_with_semaphore(dataset, semaphore, report)
                for dataset in planned
            ),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

        untouched = 0
        for table in report.failed:
            untouched += await self.store.estimate_row_count(table)
        report.total_rows = (
            sum(report.loaded.values()) + sum(report.skipped.values()) + untouched
        )

        if report.loaded:
            await self.metadata.complete(report.total_rows)
            logger.info(f"Load complete. Total records: {report.total_rows}")
        else:
            logger.error("Every table load failed; metadata left at 'loading'")

        if report.failed:
            logger.warning(f"Failed tables: {', '.join(sorted(report.failed))}")
        return report

    async def close(self):
        """Release the store connection pool."""
        await self.store.close()
