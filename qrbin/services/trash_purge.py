"""
Retention sweep for trashed bins.

Bins whose deleted_at is at least the location's trash_retention_days in the
past are permanently deleted through BinService.permanent_delete. The sweep is
triggered opportunistically (when trash is listed), so running late is fine;
running early is not.

Fire-and-forget: a sweep never raises.
"""
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from qrbin.database import get_db_context
from qrbin.errors import NotFoundError
from qrbin.models.bin import Bin
from qrbin.models.location import Location
from qrbin.services.bin import BinService
from qrbin.services.blob_store import LocalBlobStore
from qrbin.utils.logger import log_error, log_info
from qrbin.utils.prometheus_metrics import trash_purged_bins_total, trash_sweep_failures_total
from qrbin.utils.timeutil import utcnow


class TrashPurger:
    """Runs retention sweeps in their own session and transaction."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        blob_store: Optional[LocalBlobStore] = None,
    ):
        self.session_factory = session_factory
        self.blob_store = blob_store

    async def sweep(self, location_id: str, now: Optional[datetime] = None) -> int:
        """
        Purge expired trash of one location.

        Args:
            location_id: Location to sweep
            now: Reference time (defaults to the current UTC time)

        Returns:
            Number of bins purged (0 on failure)
        """
        purged = 0
        try:
            async with get_db_context(self.session_factory) as db:
                retention_days = await db.scalar(
                    select(Location.trash_retention_days).where(Location.id == location_id)
                )
                if retention_days is None:
                    return 0

                cutoff = (now or utcnow()) - timedelta(days=retention_days)
                result = await db.execute(
                    select(Bin.id).where(
                        Bin.location_id == location_id,
                        Bin.deleted_at.is_not(None),
                        Bin.deleted_at <= cutoff,
                    )
                )
                expired_ids = list(result.scalars().all())
                if not expired_ids:
                    return 0

                service = BinService(db, self.blob_store)
                for bin_id in expired_ids:
                    try:
                        await service.permanent_delete(bin_id)
                        purged += 1
                    except NotFoundError:
                        # 동시에 다른 요청이 먼저 삭제/복원함: 무시
                        continue
        except Exception as e:
            trash_sweep_failures_total.inc()
            log_error(
                "Trash sweep failed",
                exc_info=True,
                event="trash",
                location_id=location_id,
                error_type=type(e).__name__,
            )
            return 0

        trash_purged_bins_total.inc(purged)
        log_info("Trash sweep finished", event="trash", location_id=location_id, purged=purged)
        return purged


async def purge_expired_trash(location_id: str, purger: Optional[TrashPurger] = None) -> None:
    """Background task entry point; never raises."""
    await (purger or TrashPurger()).sweep(location_id)
