"""
Pydantic schemas package.
All schemas are exported here for easy import.
"""
from qrbin.schemas.bin import (
    BinCreate,
    BinUpdate,
    BinResponse,
    AddTagsRequest,
)
from qrbin.schemas.photo import (
    PhotoResponse,
    PhotoUploadResponse,
)
from qrbin.schemas.location import (
    LocationCreate,
    LocationUpdate,
    LocationResponse,
    MemberAdd,
    AreaCreate,
    AreaResponse,
)
from qrbin.schemas.portability import (
    ImportMode,
    ImportResult,
    LegacyImportRequest,
    Snapshot,
    SnapshotBin,
    SnapshotPhoto,
)

__all__ = [
    # Bin schemas
    "BinCreate",
    "BinUpdate",
    "BinResponse",
    "AddTagsRequest",
    # Photo schemas
    "PhotoResponse",
    "PhotoUploadResponse",
    # Location schemas
    "LocationCreate",
    "LocationUpdate",
    "LocationResponse",
    "MemberAdd",
    "AreaCreate",
    "AreaResponse",
    # Snapshot schemas
    "ImportMode",
    "ImportResult",
    "LegacyImportRequest",
    "Snapshot",
    "SnapshotBin",
    "SnapshotPhoto",
]
