"""Tests for the shadow-table loader."""

import pytest

from dataset_refresher.application.exceptions import LoadError
from dataset_refresher.application.loader import ShadowLoader
from dataset_refresher.infrastructure.introspection import CatalogIntrospector
from dataset_refresher.infrastructure.processing import TsvDecompressor

from conftest import TITLE_COLUMNS, TITLE_INDEXES, title_rows, write_gzip_tsv


@pytest.fixture
def work_dir(tmp_path):
    return tmp_path / "work"


@pytest.fixture
def loader(store, work_dir):
    return ShadowLoader(
        store, CatalogIntrospector(store), TsvDecompressor(), work_dir
    )


@pytest.fixture
def dataset(store, make_dataset):
    dataset = make_dataset("title.basics")
    store.create_table("title_basics", rows=title_rows(4, prefix="old"))
    write_gzip_tsv(dataset.artifact.path, TITLE_COLUMNS, title_rows(12))
    return dataset


class TestShadowLoader:
    """Tests for ShadowLoader.load."""

    @pytest.mark.asyncio
    async def test_load_populates_shadow_and_leaves_production(
        self, store, loader, dataset
    ):
        rows = await loader.load(dataset, list(TITLE_INDEXES))

        assert rows == 12
        assert store.count("title_basics_new") == 12
        assert store.count("title_basics") == 4
        assert set(store.tables["title_basics_new"].indexes.values()) == set(
            TITLE_INDEXES
        )

    @pytest.mark.asyncio
    async def test_indexes_are_deferred_until_after_bulk_insert(
        self, store, loader, dataset
    ):
        await loader.load(dataset, list(TITLE_INDEXES))

        shadow_calls = [op for op, table in store.calls if table == "title_basics_new"]
        load_at = shadow_calls.index("bulk_load")
        assert shadow_calls[:load_at].count("drop_index") == len(TITLE_INDEXES)
        assert "add_index" not in shadow_calls[:load_at]
        assert shadow_calls[load_at + 1:].count("add_index") == len(TITLE_INDEXES)

    @pytest.mark.asyncio
    async def test_primary_key_deduplicates_rows(self, store, loader, dataset):
        rows = title_rows(5)
        write_gzip_tsv(dataset.artifact.path, TITLE_COLUMNS, rows + rows[:2])

        assert await loader.load(dataset, list(TITLE_INDEXES)) == 5

    @pytest.mark.asyncio
    async def test_decompressed_file_is_removed(self, loader, dataset, work_dir):
        await loader.load(dataset, list(TITLE_INDEXES))
        assert list(work_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_stale_shadow_is_replaced(self, store, loader, dataset):
        store.create_table("title_basics_new", rows=title_rows(50, prefix="zz"))

        assert await loader.load(dataset, list(TITLE_INDEXES)) == 12

    @pytest.mark.asyncio
    async def test_unknown_header_column_is_a_load_error(self, store, loader, dataset):
        write_gzip_tsv(
            dataset.artifact.path,
            ("tconst", "primaryTitle", "bogus"),
            [("tt1", "x", "y")],
        )

        with pytest.raises(LoadError) as excinfo:
            await loader.load(dataset, list(TITLE_INDEXES))

        assert excinfo.value.phase == "bulk insert"
        assert "bogus" in str(excinfo.value)
        assert store.count("title_basics") == 4

    @pytest.mark.asyncio
    async def test_corrupt_artifact_is_a_load_error(self, store, loader, dataset):
        dataset.artifact.path.write_bytes(b"garbage")

        with pytest.raises(LoadError) as excinfo:
            await loader.load(dataset, list(TITLE_INDEXES))

        assert excinfo.value.table == "title_basics"
        assert excinfo.value.phase == "bulk insert"

    @pytest.mark.asyncio
    async def test_index_build_failure_keeps_shadow_for_inspection(
        self, store, loader, dataset
    ):
        store.fail("add_index", "title_basics_new")

        with pytest.raises(LoadError) as excinfo:
            await loader.load(dataset, list(TITLE_INDEXES))

        assert excinfo.value.phase == "index rebuild"
        assert store.count("title_basics_new") == 12
        assert store.count("title_basics") == 4

    @pytest.mark.asyncio
    async def test_index_mismatch_after_rebuild_is_a_load_error(
        self, store, loader, dataset, monkeypatch
    ):
        real_add_index = store.add_index

        async def add_index_skipping_fulltext(table, index):
            if index.name != "ft_primaryTitle":
                await real_add_index(table, index)

        monkeypatch.setattr(store, "add_index", add_index_skipping_fulltext)

        with pytest.raises(LoadError, match="do not match") as excinfo:
            await loader.load(dataset, list(TITLE_INDEXES))
        assert excinfo.value.phase == "index rebuild"
