# app/planning_center/groups.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional

from app.cache.tiered import TieredCache
from app.models import Group, RosterMember
from app.planning_center.client import MAX_PER_PAGE, PCOClient
from app.planning_center.errors import PCOError

log = logging.getLogger(__name__)

ALL_GROUPS_KEY = "all_groups"


def _group_type_id(g: dict) -> Optional[str]:
    rel = ((g.get("relationships") or {}).get("group_type") or {}).get("data") or {}
    gid = rel.get("id")
    return str(gid) if gid is not None else None


class GroupDirectory:
    """Groups, their tags (family flag / type / meeting day) and current rosters."""

    def __init__(
        self,
        client: PCOClient,
        cache: TieredCache,
        *,
        group_type_id: Optional[int] = None,
        family_tag_id: str = "1252160",
    ):
        self.client = client
        self.cache = cache
        self.group_type_id = group_type_id
        self.family_tag_id = str(family_tag_id)

    # ── groups ────────────────────────────────────────────────────────────────
    async def _load_all_groups(self) -> List[dict]:
        page = await self.client.paginate(
            "/groups/v2/groups",
            {"include": "group_type,tags", "per_page": MAX_PER_PAGE},
        )
        rows: List[dict] = []
        for g in page["data"]:
            attrs = g.get("attributes") or {}
            if attrs.get("archived_at") is not None:
                continue
            rows.append({
                "id": str(g.get("id")),
                "name": attrs.get("name") or "",
                "group_type_id": _group_type_id(g),
            })
        log.info("[groups] loaded %d active groups", len(rows))
        return rows

    async def fetch_raw_groups(self, force_refresh: bool = False) -> List[dict]:
        return await self.cache.get_or_load(ALL_GROUPS_KEY, self._load_all_groups, force_refresh=force_refresh)

    async def fetch_groups(self, group_type_id: Optional[int] = None, force_refresh: bool = False) -> List[Group]:
        """Active groups of the given type (all types if None), with tag metadata."""
        type_id = group_type_id if group_type_id is not None else self.group_type_id
        raw = await self.fetch_raw_groups(force_refresh)
        if type_id is not None:
            raw = [g for g in raw if g.get("group_type_id") == str(type_id)]

        groups: List[Group] = []
        for g in raw:
            try:
                tags = await self.fetch_group_tags(g["id"], force_refresh)
            except PCOError as e:
                log.warning("[groups] tags unavailable for %s (%s): %s", g["id"], e.kind, e)
                tags = {}
            groups.append(Group(
                id=g["id"],
                name=g["name"],
                tags=tags,
                is_family=self.family_tag_id in tags,
            ))
        return groups

    async def fetch_group(self, group_id: str, force_refresh: bool = False) -> dict:
        """Single group resource (id, type, attributes); a missing group raises not_found."""
        body = await self.cache.get_or_load(
            f"group_{group_id}",
            lambda: self.client.request(f"/groups/v2/groups/{group_id}"),
            force_refresh=force_refresh,
        )
        return body.get("data") or {}

    # ── tags ──────────────────────────────────────────────────────────────────
    async def fetch_group_tags(self, group_id: str, force_refresh: bool = False) -> Dict[str, str]:
        async def load() -> List[dict]:
            page = await self.client.paginate(f"/groups/v2/groups/{group_id}/tags")
            return [
                {"id": str(t.get("id")), "name": (t.get("attributes") or {}).get("name") or ""}
                for t in page["data"]
            ]

        rows = await self.cache.get_or_load(f"tags_{group_id}", load, force_refresh=force_refresh)
        return {r["id"]: r["name"] for r in rows}

    async def is_family_group(self, group_id: str) -> bool:
        try:
            tags = await self.fetch_group_tags(group_id)
        except PCOError as e:
            log.warning("[groups] family check failed for %s, assuming not family: %s", group_id, e)
            return False
        return self.family_tag_id in tags

    # ── memberships ───────────────────────────────────────────────────────────
    async def fetch_memberships(self, group_id: str, force_refresh: bool = False) -> List[RosterMember]:
        async def load() -> List[dict]:
            page = await self.client.paginate(
                f"/groups/v2/groups/{group_id}/memberships",
                {"include": "person", "per_page": MAX_PER_PAGE},
            )
            people: Dict[str, dict] = {}
            for inc in page["included"]:
                if inc.get("type") == "Person":
                    people[str(inc.get("id"))] = inc.get("attributes") or {}

            rows: List[dict] = []
            for m in page["data"]:
                pid = (((m.get("relationships") or {}).get("person") or {}).get("data") or {}).get("id")
                if not pid:
                    continue
                person = people.get(str(pid)) or {}
                rows.append({
                    "person_id": str(pid),
                    "first_name": person.get("first_name") or "",
                    "last_name": person.get("last_name") or "",
                    "role": ((m.get("attributes") or {}).get("role") or "member").lower(),
                })
            return rows

        rows = await self.cache.get_or_load(f"memberships_{group_id}", load, force_refresh=force_refresh)
        return [RosterMember(**r) for r in rows]

    async def cache_info(self) -> Optional[datetime]:
        return await self.cache.durable.get_timestamp(ALL_GROUPS_KEY)
