# app/planning_center/refresh.py
from __future__ import annotations

import logging
import time
from datetime import date
from typing import Optional

from app.services import Services

log = logging.getLogger(__name__)


async def refresh_all(services: Services, *, force_refresh: bool = True, today: Optional[date] = None) -> dict:
    """
    Nightly refresh: group list, then each group's attendance one group at a
    time, then today's roster snapshots. Failures are counted, not raised.
    """
    t0 = time.perf_counter()
    log.info("[refresh] starting force_refresh=%s", force_refresh)

    groups = await services.directory.fetch_groups(force_refresh=force_refresh)
    attendance = await services.fetcher.fetch_many(groups, force_refresh=force_refresh)
    snapshots = await services.snapshots.capture_groups(
        groups,
        services.directory,
        today,
        group_delay=services.settings.GROUP_REFRESH_DELAY_SECONDS,
    )

    elapsed = round(time.perf_counter() - t0, 2)
    log.info("[refresh] done in %.2fs groups=%d attendance_ok=%d attendance_failed=%d snapshots_ok=%d",
             elapsed, len(groups), attendance.success_count, attendance.error_count, snapshots.success_count)
    return {
        "status": "ok",
        "groups": len(groups),
        "attendance": attendance.summary(),
        "snapshots": snapshots.summary(),
        "elapsed_seconds": elapsed,
    }
