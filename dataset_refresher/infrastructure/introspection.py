"""Catalog-backed implementation of the SchemaIntrospector port."""

import logging
from collections import defaultdict
from typing import Dict, List

from pydantic import ValidationError

from ..application.domain import (
    IndexColumn,
    IndexDefinition,
    IndexKind,
    SchemaIntrospector,
    Store,
)
from ..application.exceptions import StoreError

from .store_models import IndexCatalogRow


class CatalogIntrospector(SchemaIntrospector):
    """Rebuilds index definitions from the store's index catalog."""

    def __init__(self, store: Store):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.store = store

    def _validate_rows(self, table: str, raw_rows) -> List[IndexCatalogRow]:
        try:
            return [IndexCatalogRow.model_validate(row) for row in raw_rows]
        except ValidationError as e:
            raise StoreError(
                f"Unexpected index catalog rows for {table}: {e}"
            ) from e

    def _group(self, rows: List[IndexCatalogRow]) -> List[IndexDefinition]:
        """Group per-column rows into definitions, keeping column order."""
        grouped: Dict[str, List[IndexCatalogRow]] = defaultdict(list)
        for row in rows:
            if not row.is_primary:
                grouped[row.index_name].append(row)

        definitions = []
        for name in sorted(grouped):
            members = sorted(grouped[name], key=lambda r: r.seq_in_index)
            first = members[0]
            definitions.append(
                IndexDefinition(
                    name=name,
                    unique=not first.non_unique,
                    kind=(
                        IndexKind.FULLTEXT
                        if first.is_fulltext
                        else IndexKind.ORDINARY
                    ),
                    columns=tuple(
                        IndexColumn(r.column_name, r.sub_part) for r in members
                    ),
                )
            )
        return definitions

    async def capture_indexes(self, table: str) -> List[IndexDefinition]:
        """
        Capture every secondary index of `table`, excluding the primary key.

        Returns:
            Definitions ordered by index name, each with its columns in
            index sequence order.

        Raises:
            StoreError: If the catalog cannot be read or is malformed.
        """

        raw_rows = await self.store.index_catalog(table)
        definitions = self._group(self._validate_rows(table, raw_rows))
        self.logger.info(
            f"Captured {len(definitions)} secondary indexes from {table}"
        )
        return definitions
