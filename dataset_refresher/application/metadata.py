"""The refresh metadata handle owned by the orchestrator."""

import datetime
import logging
from typing import Callable, Optional

from .domain import RefreshMetadata, RefreshStatus, Store


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


class RefreshMetadataHandle:
    """
    Explicit handle on the persisted metadata singleton.

    The orchestrator is the only writer; every mutation is written through
    to the store immediately so external monitors see each phase change.
    """

    def __init__(
        self,
        store: Store,
        max_age_days: int,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.store = store
        self.max_age_days = max_age_days
        self.clock = clock
        self._current: Optional[RefreshMetadata] = None

    async def current(self) -> RefreshMetadata:
        if self._current is None:
            self._current = await self.store.read_metadata()
        return self._current

    async def mark(self, status: RefreshStatus):
        metadata = await self.current()
        metadata.status = status
        await self.store.write_metadata(metadata)
        self.logger.info(f"Pipeline status: {status.value}")

    async def complete(self, records_loaded: int) -> RefreshMetadata:
        """Record a completed refresh and schedule the next one."""
        now = self.clock()
        metadata = await self.current()
        metadata.status = RefreshStatus.COMPLETE
        metadata.last_updated = now
        metadata.next_update = now + datetime.timedelta(days=self.max_age_days)
        metadata.update_interval_days = self.max_age_days
        metadata.records_loaded = records_loaded
        await self.store.write_metadata(metadata)
        self.logger.info(
            f"Pipeline status: complete ({records_loaded} records, "
            f"next update {metadata.next_update:%Y-%m-%d %H:%M:%S})"
        )
        return metadata

    def invalidate(self):
        """Forget the cached record so the next read hits the store."""
        self._current = None
