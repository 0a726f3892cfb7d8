"""Atomic promotion of a shadow table to production."""

import logging

from .domain import DatasetSpec, Store, TableGeneration
from .exceptions import StoreError, SwapError


class Swapper:
    """Exchanges a table's production and shadow generations in one step."""

    def __init__(self, store: Store):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.store = store

    async def promote(self, dataset: DatasetSpec):
        """
        Rename production to retiring and shadow to production atomically,
        then drop the retiring generation.

        A failure to drop the retiring table is logged and left for the next
        promotion; it never undoes the swap.

        Raises:
            SwapError: If the rename could not be performed.
        """

        production = dataset.table_name(TableGeneration.PRODUCTION)
        shadow = dataset.table_name(TableGeneration.SHADOW)
        retiring = dataset.table_name(TableGeneration.RETIRING)

        try:
            await self.store.drop_table(retiring)
        except StoreError as e:
            raise SwapError(
                production, f"leftover {retiring} could not be dropped: {e}"
            ) from e

        self.logger.info(f"  Swapping {shadow} into {production} (atomic)...")
        try:
            await self.store.rename_tables(
                [(production, retiring), (shadow, production)]
            )
        except StoreError as e:
            raise SwapError(production, str(e)) from e

        try:
            await self.store.drop_table(retiring)
        except StoreError as e:
            self.logger.warning(
                f"  Could not drop {retiring} after promotion, "
                f"will retry on the next refresh: {e}"
            )
