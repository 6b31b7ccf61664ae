"""Building blocks shared by the Kualitee models: ids, timestamps, enums."""

from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from uuid_extensions import uuid7

# Column that joins a SOURCE_INPUT row to its TARGET_OUTPUT row.
KEY_COLUMN = "MSID"

UUIDv7 = Annotated[UUID, Field(description="Time-sortable UUID v7.")]
UTCTimestamp = Annotated[datetime, Field(description="Timezone-aware UTC timestamp.")]


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def new_uuid7() -> UUID:
    """Project and test set ids sort by creation time."""
    return uuid7()


class DatasetSide(StrEnum):
    """The uploaded file a row, mismatch or join error refers to."""

    SOURCE = "SOURCE"
    TARGET = "TARGET"

    @property
    def label(self) -> str:
        """Name shown to users: SOURCE_INPUT or TARGET_OUTPUT."""
        return f"{self.value}_{'INPUT' if self is DatasetSide.SOURCE else 'OUTPUT'}"

    @property
    def other(self) -> "DatasetSide":
        return DatasetSide.TARGET if self is DatasetSide.SOURCE else DatasetSide.SOURCE


class ValidationErrorType(StrEnum):
    """Why two datasets could not be joined."""

    MISSING_KEY_COLUMN = "MISSING_MSID_COLUMN"
    KEY_PARITY_MISMATCH = "MSID_PARITY_ERROR"
    DATA_MISMATCH = "DATA_MISMATCH"
    DUPLICATE_KEY = "DUPLICATE_MSID"


class KualiteeBase(BaseModel):
    """Accepts field names or aliases; ``model_`` prefixes are allowed."""

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())
