"""
Pydantic models for validating rows read from the store's catalogs and
from configuration.

These models serve as a strict contract for data crossing the
infrastructure boundary, so that a catalog or config deviation is caught
here before it reaches the refresh pipeline.
"""

import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ..application.domain import RefreshStatus


class IndexCatalogRow(BaseModel):
    """
    One row of `information_schema.STATISTICS`: a single column of an index.

    `sub_part` is the indexed prefix length, or null when the whole column
    is indexed.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    index_name: str
    non_unique: bool
    index_type: str
    seq_in_index: int
    column_name: str
    sub_part: Optional[int] = None

    @property
    def is_primary(self) -> bool:
        return self.index_name.upper() == "PRIMARY"

    @property
    def is_fulltext(self) -> bool:
        return self.index_type.upper() == "FULLTEXT"


class MetadataRow(BaseModel):
    """Represents the singleton refresh metadata row."""

    status: RefreshStatus = RefreshStatus.PENDING
    last_updated: Optional[datetime.datetime] = None
    next_update: Optional[datetime.datetime] = None
    update_interval_days: Optional[int] = None
    records_loaded: Optional[int] = None

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value):
        return value or RefreshStatus.PENDING


class DatasetConfig(BaseModel):
    """A dataset entry from `refresher.datasets` in the settings file."""

    name: str
    file: str
    table: str
    url: Optional[str] = None

    @field_validator("table")
    @classmethod
    def _plain_identifier(cls, value: str) -> str:
        if not value.replace("_", "").isalnum():
            raise ValueError(f"table name {value!r} must be alphanumeric")
        return value
