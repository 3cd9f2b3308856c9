"""
Database models package.
All models are exported here for easy import.
"""
from qrbin.models.location import Location, LocationMember, Area
from qrbin.models.bin import Bin, BinState
from qrbin.models.photo import Photo
from qrbin.models.activity import ActivityLog

__all__ = ["Location", "LocationMember", "Area", "Bin", "BinState", "Photo", "ActivityLog"]
