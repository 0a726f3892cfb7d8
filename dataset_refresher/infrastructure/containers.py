"""
Dependency Injection container for the dataset refresher.

This container uses the `dependency-injector` library to wire together all
the components of the application, such as services and infrastructure adapters,
based on the application's configuration. Settings are read lazily, so a
missing credential only surfaces when the component needing it is built.
"""

from typing import Iterable, List

from dependency_injector import containers, providers
from pydantic import ValidationError
import httpx

from ..application.domain import *
from ..application.exceptions import ConfigurationError
from ..application.freshness import FreshnessGate
from ..application.loader import ShadowLoader
from ..application.metadata import RefreshMetadataHandle
from ..application.scheduler import Scheduler
from ..application.service import RefreshOrchestrator, TableRefreshPipeline
from ..application.swapper import Swapper
from ..settings import load_settings, resolve_path

from .downloader import HttpFetcher
from .introspection import CatalogIntrospector
from .processing import StreamValidator, TsvDecompressor
from .store import MariaDbStore, create_store_engine
from .store_models import DatasetConfig


def build_datasets(
    entries: Iterable, base_url: str, data_dir
) -> List[DatasetSpec]:
    """
    Map configured dataset entries onto domain specs.

    Raises:
        ConfigurationError: If an entry is malformed.
    """

    datasets = []
    for entry in entries:
        try:
            config = DatasetConfig.model_validate(dict(entry))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid dataset entry: {e}") from e
        artifact = SourceArtifact(
            name=config.name,
            url=config.url or f"{base_url.rstrip('/')}/{config.file}",
            path=resolve_path(data_dir) / config.file,
        )
        datasets.append(
            DatasetSpec(name=config.name, table=config.table, artifact=artifact)
        )
    return datasets


class Container(containers.DeclarativeContainer):
    """DI container for wiring the application components."""

    cli_args = providers.Configuration()

    config = providers.Singleton(load_settings)

    http_client = providers.Singleton(httpx.AsyncClient)

    engine = providers.Singleton(
        create_store_engine,
        host=config.provided.store.host,
        port=config.provided.store.port,
        user=config.provided.store.user,
        password=config.provided.store.password,
        database=config.provided.store.database,
        pool_size=config.provided.store.pool_size,
    )

    store: providers.Singleton[Store] = providers.Singleton(
        MariaDbStore,
        engine=engine,
        schema_file=providers.Callable(
            resolve_path, config.provided.paths.schema_file
        ),
        metadata_table=config.provided.refresher.metadata_table,
    )

    datasets = providers.Singleton(
        build_datasets,
        entries=config.provided.refresher.datasets,
        base_url=config.provided.refresher.base_url,
        data_dir=config.provided.paths.data_dir,
    )

    validator: providers.Singleton[ArchiveValidator] = providers.Singleton(
        StreamValidator,
        force_check=cli_args.force_check,
        chunk_size=config.provided.refresher.processor.chunk_size,
    )

    decompressor: providers.Factory[Decompressor] = providers.Factory(
        TsvDecompressor,
        chunk_size=config.provided.refresher.processor.chunk_size,
    )

    introspector: providers.Factory[SchemaIntrospector] = providers.Factory(
        CatalogIntrospector,
        store=store,
    )

    fetcher: providers.Factory[Fetcher] = providers.Factory(
        HttpFetcher,
        client=http_client,
        validator=validator,
        timeout=config.provided.refresher.downloader.timeout,
        chunk_size=config.provided.refresher.downloader.chunk_size,
        attempts=config.provided.refresher.downloader.attempts,
        backoff_seconds=config.provided.refresher.downloader.backoff_seconds,
        transfer_timeout=(
            config.provided.refresher.downloader.transfer_timeout_seconds
        ),
        show_progress=config.provided.refresher.downloader.show_progress,
    )

    gate = providers.Factory(
        FreshnessGate,
        validator=validator,
        fetch_missing=config.provided.refresher.fetch_missing,
    )

    loader = providers.Factory(
        ShadowLoader,
        store=store,
        introspector=introspector,
        decompressor=decompressor,
        work_dir=providers.Callable(
            resolve_path, config.provided.paths.work_dir
        ),
    )

    pipeline = providers.Factory(
        TableRefreshPipeline,
        introspector=introspector,
        loader=loader,
        swapper=providers.Factory(Swapper, store=store),
    )

    metadata = providers.Singleton(
        RefreshMetadataHandle,
        store=store,
        max_age_days=config.provided.refresher.max_age_days,
    )

    orchestrator = providers.Singleton(
        RefreshOrchestrator,
        store=store,
        datasets=datasets,
        gate=gate,
        fetcher=fetcher,
        pipeline=pipeline,
        metadata=metadata,
        max_age_days=config.provided.refresher.max_age_days,
        concurrent_downloads=config.provided.refresher.concurrent_downloads,
        concurrent_loads=config.provided.refresher.concurrent_loads,
    )

    scheduler = providers.Factory(
        Scheduler,
        orchestrator=orchestrator,
        initial_delay=config.provided.refresher.initial_delay_seconds,
        interval=config.provided.refresher.check_interval_seconds,
    )
