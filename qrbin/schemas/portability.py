"""
Snapshot (export/import) schemas.

Wire format is camelCase JSON. Version 2 bins carry items/notes and embedded
photos; version 1 bins carry a single "contents" string, and v1 files may
carry a top-level "photos" array referencing bins by binId.
"""
from enum import Enum
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ImportMode(str, Enum):
    """How an import treats the location's existing bins."""
    MERGE = "merge"
    REPLACE = "replace"


class _CamelModel(BaseModel):
    # v1 파일은 id를 숫자로 저장한 경우가 있음
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True
    )


class SnapshotPhoto(_CamelModel):
    """Photo embedded in a snapshot bin. data is base64."""

    id: Optional[str] = None
    filename: str = Field("photo.jpg", max_length=255)
    mime_type: str = Field(
        "image/jpeg",
        max_length=50,
        validation_alias=AliasChoices("mimeType", "mime_type", "type"),
    )
    data: str = Field(..., validation_alias=AliasChoices("data", "dataBase64"))


class SnapshotBin(_CamelModel):
    """One bin entry. items/notes are None on version 1 input (see contents)."""

    id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=255)
    area_id: Optional[str] = None
    items: Optional[List[str]] = None
    notes: Optional[str] = None
    contents: Optional[str] = Field(None, exclude=True)
    tags: List[str] = Field(default_factory=list)
    icon: str = ""
    color: str = ""
    short_code: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    photos: List[SnapshotPhoto] = Field(default_factory=list)


class LegacyPhoto(_CamelModel):
    """Top-level photo of a version 1 file."""

    id: Optional[str] = None
    bin_id: str
    data_base64: str = Field(..., validation_alias=AliasChoices("dataBase64", "data"))
    filename: str = "photo.jpg"
    mime_type: str = "image/jpeg"
    size: Optional[int] = None
    created_at: Optional[str] = None


class Snapshot(_CamelModel):
    """Versioned snapshot of one location's bins."""

    version: Literal[1, 2] = 2
    exported_at: Optional[str] = None
    location_name: Optional[str] = Field(
        None, validation_alias=AliasChoices("locationName", "homeName", "location_name")
    )
    bins: List[SnapshotBin]
    photos: List[LegacyPhoto] = Field(default_factory=list, exclude=True)


class ImportResult(_CamelModel):
    """Import counters."""

    bins_imported: int = 0
    bins_skipped: int = 0
    photos_imported: int = 0
    photos_skipped: int = 0


class LegacyImportRequest(_CamelModel):
    """Body of the legacy import endpoint."""

    location_id: str = Field(..., validation_alias=AliasChoices("locationId", "homeId", "location_id"))
    data: dict
