import logging

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.location import Location
from app.repositories.locations import online_counts_by_location
from app.schemas.sweep import ReconcileReport


log = logging.getLogger(__name__)


async def reconcile_location_counts(db: AsyncSession) -> ReconcileReport:
    """
    Recompute every location's listings_count from ONLINE listings and fix drift.

    Only rows whose stored value differs are written; the update is conditional on
    the value we read so a concurrent publish is not overwritten (it is picked up
    on the next run).
    """
    actual = await online_counts_by_location(db)
    stored = dict((await db.execute(select(Location.id, Location.listings_count))).all())

    report = ReconcileReport(locations_checked=len(stored))
    for location_id, current in stored.items():
        expected = actual.get(location_id, 0)
        if current == expected:
            continue
        result = await db.execute(
            update(Location)
            .where(Location.id == location_id, Location.listings_count == current)
            .values(listings_count=expected)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            report.corrections[location_id] = (current, expected)
            log.warning("reconcile: location=%s listings_count %d -> %d", location_id, current, expected)

    await db.commit()
    log.info("reconcile: checked=%d corrected=%d", report.locations_checked, len(report.corrections))
    return report
