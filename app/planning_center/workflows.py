# app/planning_center/workflows.py
from __future__ import annotations

import logging
from typing import Dict, Iterable, List

from app.cache.tiered import TieredCache
from app.planning_center.client import MAX_PER_PAGE, PCOClient
from app.planning_center.errors import PCOError

log = logging.getLogger(__name__)

REMOVED_STAGE = "removed"


def _attrs(item: dict) -> dict:
    return item.get("attributes") or {}


class WorkflowDirectory:
    """
    Dream Team rosters, read from People workflows.
    Each workflow in the Dream Team category is one team; its cards are the
    people on it. Cards moved to the `removed` stage are no longer on the team.
    """

    def __init__(
        self,
        client: PCOClient,
        cache: TieredCache,
        *,
        category_id: str = "11927",
        excluded_ids: Iterable[str] = ("568000", "610176"),
    ):
        self.client = client
        self.cache = cache
        self.category_id = str(category_id)
        self.excluded_ids = frozenset(str(x) for x in excluded_ids)

    # ── workflows ─────────────────────────────────────────────────────────────
    async def fetch_workflows(self, category_id: str, force_refresh: bool = False) -> List[dict]:
        async def load() -> List[dict]:
            page = await self.client.paginate(
                "/people/v2/workflows",
                {"where[workflow_category_id]": category_id, "per_page": MAX_PER_PAGE},
            )
            rows = []
            for w in page["data"]:
                a = _attrs(w)
                rows.append({
                    "id": str(w.get("id")),
                    "name": a.get("name") or "",
                    "total_cards": a.get("total_card_count") or 0,
                    "ready_cards": a.get("total_ready_card_count") or 0,
                    "completed_cards": a.get("completed_card_count") or 0,
                    "last_updated": a.get("updated_at"),
                })
            return rows

        return await self.cache.get_or_load(f"workflows_category_{category_id}", load, force_refresh=force_refresh)

    # ── cards ─────────────────────────────────────────────────────────────────
    async def fetch_cards(self, workflow_id: str, force_refresh: bool = False) -> List[dict]:
        """Every card in the workflow (removed ones included), joined to its person."""
        async def load() -> List[dict]:
            page = await self.client.paginate(
                f"/people/v2/workflows/{workflow_id}/cards",
                {"include": "person", "per_page": MAX_PER_PAGE},
            )
            people: Dict[str, dict] = {
                str(inc.get("id")): _attrs(inc)
                for inc in page["included"]
                if inc.get("type") == "Person"
            }
            rows = []
            for card in page["data"]:
                pid = (((card.get("relationships") or {}).get("person") or {}).get("data") or {}).get("id")
                if not pid:
                    continue
                person = people.get(str(pid)) or {}
                a = _attrs(card)
                rows.append({
                    "card_id": str(card.get("id")),
                    "person_id": str(pid),
                    "first_name": person.get("first_name") or "Unknown",
                    "last_name": person.get("last_name") or "",
                    "nickname": person.get("nickname"),
                    "joined_at": a.get("created_at"),
                    "moved_to_step_at": a.get("moved_to_step_at"),
                    "stage": a.get("stage"),
                })
            return rows

        return await self.cache.get_or_load(f"workflow_cards_{workflow_id}", load, force_refresh=force_refresh)

    # ── rosters ───────────────────────────────────────────────────────────────
    async def dream_team_rosters(self, force_refresh: bool = False) -> List[dict]:
        """
        One entry per Dream Team workflow with its current roster, sorted by
        first name. A workflow whose cards can't be read gets an empty roster;
        a failure listing the workflows themselves propagates.
        """
        workflows = await self.fetch_workflows(self.category_id, force_refresh)
        teams: List[dict] = []
        for w in workflows:
            if w["id"] in self.excluded_ids:
                continue
            try:
                cards = await self.fetch_cards(w["id"], force_refresh)
            except PCOError as e:
                log.warning("[workflows] roster unavailable for %s (%s): %s", w["id"], e.kind, e)
                cards = []
            roster = sorted(
                (c for c in cards if c.get("stage") != REMOVED_STAGE),
                key=lambda c: c["first_name"],
            )
            teams.append({**w, "roster": roster})

        log.info("[workflows] %d dream team rosters", len(teams))
        return teams
