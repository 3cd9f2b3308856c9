"""
Services package.
Contains the bin/photo lifecycle and portability business logic.
"""
from qrbin.services.blob_store import LocalBlobStore
from qrbin.services.bin import BinService
from qrbin.services.location import LocationService
from qrbin.services.photo import PhotoService
from qrbin.services.portability import PortabilityService
from qrbin.services.trash_purge import TrashPurger

__all__ = [
    "LocalBlobStore",
    "BinService",
    "LocationService",
    "PhotoService",
    "PortabilityService",
    "TrashPurger",
]
