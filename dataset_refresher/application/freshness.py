"""Decides whether the local artifacts must be re-fetched."""

import logging
import time
from typing import Callable, Iterable, Optional

from .domain import ArchiveValidator, SourceArtifact

_SECONDS_PER_DAY = 86400


class FreshnessGate:
    """
    Evaluates local artifact state against a maximum age.

    Age is measured from the file's modification time rather than from any
    database timestamp, so a crash between download and load never causes a
    redundant re-download.
    """

    def __init__(
        self,
        validator: ArchiveValidator,
        fetch_missing: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.logger = logging.getLogger(self.__class__.__name__)
        self.validator = validator
        self.fetch_missing = fetch_missing
        self.clock = clock

    def age_days(self, artifact: SourceArtifact) -> Optional[int]:
        """Whole days since the artifact was last written, None if absent."""
        try:
            modified = artifact.path.stat().st_mtime
        except FileNotFoundError:
            return None
        return int(max(self.clock() - modified, 0) // _SECONDS_PER_DAY)

    async def needs_download(
        self,
        artifacts: Iterable[SourceArtifact],
        max_age_days: int,
        force: bool = False,
    ) -> bool:
        """
        Return True if any artifact is missing, corrupt or too old.

        Args:
            artifacts: The full artifact set; the decision covers the batch.
            max_age_days: Artifacts this many days old or older are stale.
            force: Bypass evaluation entirely.
        """

        if force:
            self.logger.info("Force update requested")
            return True

        stale = False
        for artifact in artifacts:
            age = self.age_days(artifact)

            if age is None:
                if self.fetch_missing:
                    self.logger.info(
                        f"File missing: {artifact.path.name} - will download"
                    )
                    stale = True
                else:
                    self.logger.warning(
                        f"File missing: {artifact.path.name} - "
                        f"use --force to download"
                    )
                continue

            if not await self.validator.is_valid(artifact.path):
                self.logger.info(
                    f"File corrupted: {artifact.path.name} - will download"
                )
                stale = True
                continue

            if age >= max_age_days:
                self.logger.info(
                    f"File {artifact.path.name} is {age} days old "
                    f"(max: {max_age_days}) - will download"
                )
                stale = True
            else:
                self.logger.info(
                    f"File {artifact.path.name} is {age} days old - OK"
                )

        if stale:
            self.logger.info("Download needed")
        else:
            self.logger.info(
                f"All files are fresh (less than {max_age_days} days old) "
                f"- no download needed"
            )
        return stale

    def log_ages(self, artifacts: Iterable[SourceArtifact]):
        """Log the age of every artifact currently on disk."""
        for artifact in artifacts:
            age = self.age_days(artifact)
            if age is not None:
                self.logger.info(f"  {artifact.path.name}: {age} days old")
