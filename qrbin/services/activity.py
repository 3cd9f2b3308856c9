"""
Activity log recorder.

Entries are written inside a SAVEPOINT so a failed insert never poisons the
caller's transaction. Recording never raises.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Iterable, Mapping, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from qrbin.models.activity import ActivityLog
from qrbin.models.location import Location
from qrbin.schemas.user import Actor
from qrbin.utils.timeutil import utcnow

logger = logging.getLogger("qrbin.activity")


def compute_changes(
    old: Mapping[str, Any],
    new: Mapping[str, Any],
    fields: Iterable[str],
) -> Optional[Dict[str, Dict[str, Any]]]:
    """
    Field-level diff for the changes column.

    Fields missing from `new` were not supplied and are skipped. A None value
    in `new` is a real change (e.g. a cleared area).

    Returns:
        {field: {"old": ..., "new": ...}} for changed fields, or None if nothing changed
    """
    changes: Dict[str, Dict[str, Any]] = {}
    for field in fields:
        if field not in new:
            continue
        new_value = new[field]
        old_value = old.get(field)
        if old_value != new_value:
            changes[field] = {"old": old_value, "new": new_value}
    return changes or None


async def record_activity(
    db: AsyncSession,
    location_id: str,
    actor: Optional[Actor],
    action: str,
    entity_type: str,
    entity_id: Optional[str] = None,
    entity_name: Optional[str] = None,
    changes: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Insert an activity entry and prune entries past the location's retention.

    Fire-and-forget: failures are logged at WARNING and swallowed.
    """
    try:
        async with db.begin_nested():
            db.add(
                ActivityLog(
                    location_id=location_id,
                    user_id=actor.user_id if actor else None,
                    user_name=actor.name if actor else "",
                    action=action,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    entity_name=entity_name,
                    changes=changes,
                )
            )
            await db.flush()

            retention_days = await db.scalar(
                select(Location.activity_retention_days).where(Location.id == location_id)
            )
            if retention_days:
                cutoff = utcnow() - timedelta(days=retention_days)
                await db.execute(
                    delete(ActivityLog)
                    .where(ActivityLog.location_id == location_id)
                    .where(ActivityLog.created_at < cutoff)
                    .execution_options(synchronize_session=False)
                )
    except Exception as e:
        logger.warning(
            "Failed to record activity",
            extra={
                "event": "activity",
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
                "error_type": type(e).__name__,
                "error": str(e)[:200],
            },
        )
