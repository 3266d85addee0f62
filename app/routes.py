# app/routes.py
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from app.planning_center.errors import NOT_FOUND, PCOError
from app.planning_center.groups import ALL_GROUPS_KEY
from app.planning_center.refresh import refresh_all
from app.services import Services
from app.stats.weekly import WeeklyFilters, aggregate, week_breakdown
from app.utils.common import parse_iso_date

log = logging.getLogger(__name__)
router = APIRouter(tags=["Group Attendance"])


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(500, {"error": "not_ready", "details": "services not initialized"})
    return services


def _upstream_error(e: PCOError, what: str) -> HTTPException:
    status = 404 if e.kind == NOT_FOUND else 502
    return HTTPException(status_code=status, detail={"error": e.kind, "details": f"{what}: {e}"})


# ─────────────────────────────────────────────────────────────────────────────
# Groups
# ─────────────────────────────────────────────────────────────────────────────
@router.get("/api/groups", response_model=dict)
async def load_groups(
    force_refresh: bool = Query(False),
    services: Services = Depends(get_services),
):
    try:
        groups = await services.directory.fetch_groups(force_refresh=force_refresh)
    except PCOError as e:
        raise _upstream_error(e, "Failed to fetch groups")
    return {"data": [g.as_dict() for g in groups], "count": len(groups)}


@router.get("/api/group-stats/{group_id}", response_model=dict)
async def group_stats(
    group_id: str,
    force_refresh: bool = Query(False),
    services: Services = Depends(get_services),
):
    try:
        ga = await services.fetcher.fetch_group_attendance(group_id, False, force_refresh)
    except PCOError as e:
        raise _upstream_error(e, f"Failed to fetch statistics for group {group_id}")
    return ga.overall


@router.get("/groups/{group_id}/attendance", response_model=dict)
async def group_attendance(
    group_id: str,
    include_all_history: bool = Query(False),
    force_refresh: bool = Query(False),
    services: Services = Depends(get_services),
):
    try:
        group, ga = await asyncio.gather(
            services.directory.fetch_group(group_id, force_refresh),
            services.fetcher.fetch_group_attendance(group_id, include_all_history, force_refresh),
        )
    except PCOError as e:
        raise _upstream_error(e, f"Failed to fetch attendance for group {group_id}")
    return {"group_name": (group.get("attributes") or {}).get("name") or "", **ga.as_dict()}


# ─────────────────────────────────────────────────────────────────────────────
# Aggregate
# ─────────────────────────────────────────────────────────────────────────────
async def _fetch_all_groups(services: Services, include_all_history: bool, force_refresh: bool):
    groups = await services.directory.fetch_groups(force_refresh=force_refresh)
    return await services.fetcher.fetch_many(groups, include_all_history, force_refresh)


@router.get("/api/aggregate-attendance", response_model=dict)
async def aggregate_attendance(
    force_refresh: bool = Query(False),
    include_all_history: bool = Query(False),
    group_type: Optional[str] = Query(None, description="Family | Stage of Life | Location Based"),
    meeting_day: Optional[str] = Query(None, description="Wednesday | Thursday"),
    group_ids: Optional[List[str]] = Query(None),
    services: Services = Depends(get_services),
):
    s = services.settings
    timeout = s.AGGREGATE_HISTORY_TIMEOUT_SECONDS if include_all_history else s.AGGREGATE_TIMEOUT_SECONDS
    filters = WeeklyFilters(
        group_type=group_type,
        meeting_day=meeting_day,
        group_ids=frozenset(group_ids) if group_ids else None,
    )
    # the fetch is not tied to this request: on timeout it keeps running and fills the caches
    task = services.run_in_background(
        _fetch_all_groups(services, include_all_history, force_refresh),
        "aggregate fetch",
    )
    try:
        outcome = await asyncio.wait_for(asyncio.shield(task), timeout)
    except asyncio.TimeoutError:
        log.warning("[aggregate] gave up waiting after %.0fs; fetch continues in the background", timeout)
        raise HTTPException(504, {"error": "timeout", "details": f"aggregate exceeded {timeout:.0f}s"})
    except PCOError as e:
        raise _upstream_error(e, "Failed to fetch aggregate attendance data")

    weeks = aggregate(outcome.values, filters)
    return {
        "weeks": [w.as_dict() for w in weeks],
        "filters_applied": filters.is_explicit,
        "min_groups_per_week": filters.min_groups,
        "groups": outcome.summary(),
    }


@router.get("/api/debug-week/{day}", response_model=dict)
async def debug_week(day: str, services: Services = Depends(get_services)):
    try:
        d = parse_iso_date(day)
    except ValueError:
        raise HTTPException(400, {"error": "bad_request", "details": "date must be YYYY-MM-DD"})
    try:
        groups = await services.directory.fetch_groups()
    except PCOError as e:
        raise _upstream_error(e, "Failed to get week debug info")
    outcome = await services.fetcher.fetch_many(groups)
    return week_breakdown(outcome.values, d)


# ─────────────────────────────────────────────────────────────────────────────
# Cache
# ─────────────────────────────────────────────────────────────────────────────
@router.get("/api/check-cache", response_model=dict)
async def check_cache(services: Services = Depends(get_services)):
    ts = await services.directory.cache_info()
    stale = await services.cache.durable.needs_refresh(
        ALL_GROUPS_KEY, ttl_minutes=services.settings.CACHE_TTL_SECONDS / 60
    )
    return {"has_cached_data": ts is not None, "needs_refresh": stale}


@router.get("/api/cache-info", response_model=dict)
async def cache_info(services: Services = Depends(get_services)):
    ts = await services.directory.cache_info()
    return {"timestamp": ts.isoformat() if ts else None}


@router.get("/api/cache-stats", response_model=dict)
async def cache_stats(services: Services = Depends(get_services)):
    return {
        "memory": services.cache.memory.stats(),
        "durable": await services.cache.durable.stats(),
    }


@router.post("/api/clear-cache", response_model=dict)
async def clear_cache(services: Services = Depends(get_services)):
    removed = await services.cache.clear()
    log.info("[cache] cleared (%d durable entries)", removed)
    return {"message": "Cache cleared. Next data refresh will fetch fresh data.", "durable_removed": removed}


# ─────────────────────────────────────────────────────────────────────────────
# Dream Team rosters
# ─────────────────────────────────────────────────────────────────────────────
@router.get("/api/dream-team", response_model=dict)
async def dream_team(
    force_refresh: bool = Query(False),
    services: Services = Depends(get_services),
):
    try:
        teams = await services.workflows.dream_team_rosters(force_refresh)
    except PCOError as e:
        raise _upstream_error(e, "Failed to fetch Dream Team workflows")
    return {"data": teams, "count": len(teams)}


# ─────────────────────────────────────────────────────────────────────────────
# Membership snapshots
# ─────────────────────────────────────────────────────────────────────────────
@router.post("/api/membership-snapshots/capture", response_model=dict)
async def capture_snapshots(services: Services = Depends(get_services)):
    try:
        groups = await services.directory.fetch_groups()
    except PCOError as e:
        raise _upstream_error(e, "Failed to fetch groups")
    outcome = await services.snapshots.capture_groups(
        groups, services.directory, group_delay=services.settings.GROUP_REFRESH_DELAY_SECONDS
    )
    return {"status": "ok", "groups": len(groups), **outcome.summary()}


@router.get("/api/membership-changes", response_model=dict)
async def membership_changes(
    days_back: Optional[int] = Query(None, ge=1, le=365),
    services: Services = Depends(get_services),
):
    days = days_back or services.settings.SNAPSHOT_LOOKBACK_DAYS
    changes = await services.snapshots.diff(days)
    return {
        "days_back": days,
        "joins": [c.as_dict() for c in changes["joins"]],
        "leaves": [c.as_dict() for c in changes["leaves"]],
    }


# ─────────────────────────────────────────────────────────────────────────────
# Scheduled trigger
# ─────────────────────────────────────────────────────────────────────────────
@router.post("/api/refresh", response_model=dict)
async def refresh(services: Services = Depends(get_services)):
    try:
        return await refresh_all(services, force_refresh=True)
    except PCOError as e:
        raise _upstream_error(e, "Refresh failed")
