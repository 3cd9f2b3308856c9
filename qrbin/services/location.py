"""
Location service: locations, memberships, areas and retention settings.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.config import get_settings
from qrbin.errors import NotFoundError, ValidationError
from qrbin.models.location import Area, Location, LocationMember
from qrbin.schemas.user import Actor
from qrbin.services.activity import compute_changes, record_activity
from qrbin.utils.logger import log_info

settings = get_settings()

MIN_RETENTION_DAYS = 7
MAX_RETENTION_DAYS = 365


def _check_retention(value: Optional[int], label: str) -> None:
    if value is not None and not MIN_RETENTION_DAYS <= value <= MAX_RETENTION_DAYS:
        raise ValidationError(
            f"{label} must be between {MIN_RETENTION_DAYS} and {MAX_RETENTION_DAYS} days"
        )


class LocationService:
    """
    Service for location operations.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, name: str, actor: Actor) -> Location:
        """
        Create a location. The creator becomes its owner.

        Args:
            name: Location name (1..100 chars)
            actor: Creator

        Returns:
            Created Location model
        """
        name = (name or "").strip()
        if not name or len(name) > 100:
            raise ValidationError("Location name must be 1 to 100 characters")

        location = Location(
            name=name,
            created_by=actor.user_id,
            trash_retention_days=settings.default_trash_retention_days,
            activity_retention_days=settings.default_activity_retention_days,
        )
        self.db.add(location)
        await self.db.flush()

        self.db.add(LocationMember(location_id=location.id, user_id=actor.user_id, role="owner"))
        await self.db.flush()

        log_info("Location created", event="location", location_id=location.id)
        return location

    async def get(self, location_id: str) -> Location:
        """
        Get a location.

        Raises:
            NotFoundError: If the location does not exist
        """
        location = await self.db.get(Location, location_id)
        if location is None:
            raise NotFoundError("Location not found")
        return location

    async def is_member(self, location_id: str, user_id: str) -> bool:
        """Whether the user belongs to the location."""
        result = await self.db.execute(
            select(LocationMember.id).where(
                LocationMember.location_id == location_id,
                LocationMember.user_id == user_id,
            )
        )
        return result.first() is not None

    async def add_member(self, location_id: str, user_id: str, role: str = "member") -> LocationMember:
        """
        Add a user to a location. Adding an existing member returns the existing membership.

        Raises:
            NotFoundError: If the location does not exist
        """
        await self.get(location_id)
        result = await self.db.execute(
            select(LocationMember).where(
                LocationMember.location_id == location_id,
                LocationMember.user_id == user_id,
            )
        )
        member = result.scalar_one_or_none()
        if member is not None:
            return member

        member = LocationMember(location_id=location_id, user_id=user_id, role=role)
        self.db.add(member)
        await self.db.flush()
        return member

    async def update_settings(
        self,
        location_id: str,
        trash_retention_days: Optional[int] = None,
        activity_retention_days: Optional[int] = None,
        actor: Optional[Actor] = None,
    ) -> Location:
        """
        Update retention settings (7..365 days each). None leaves a value unchanged.

        Raises:
            NotFoundError: If the location does not exist
            ValidationError: If a value is out of range
        """
        _check_retention(trash_retention_days, "Trash retention")
        _check_retention(activity_retention_days, "Activity retention")

        location = await self.get(location_id)
        old = {
            "trash_retention_days": location.trash_retention_days,
            "activity_retention_days": location.activity_retention_days,
        }
        new = {
            field: value
            for field, value in (
                ("trash_retention_days", trash_retention_days),
                ("activity_retention_days", activity_retention_days),
            )
            if value is not None
        }

        if trash_retention_days is not None:
            location.trash_retention_days = trash_retention_days
        if activity_retention_days is not None:
            location.activity_retention_days = activity_retention_days
        await self.db.flush()

        changes = compute_changes(old, new, list(old))
        if changes:
            await record_activity(
                self.db, location_id, actor, "update", "location",
                entity_id=location_id, entity_name=location.name, changes=changes,
            )
        return location

    async def create_area(self, location_id: str, name: str) -> Area:
        """
        Create a named area in a location.

        Raises:
            NotFoundError: If the location does not exist
            ValidationError: If the name is blank or already used in the location
        """
        await self.get(location_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Area name is required")

        area = Area(location_id=location_id, name=name)
        try:
            async with self.db.begin_nested():
                self.db.add(area)
                await self.db.flush()
        except IntegrityError:
            raise ValidationError("An area with this name already exists")
        return area

    async def resolve_area_name(self, area_id: Optional[str]) -> str:
        """Area name, or "" when the area is unset or gone."""
        if not area_id:
            return ""
        area = await self.db.get(Area, area_id)
        return area.name if area else ""
