# app/config.py
from pathlib import Path
from dotenv import load_dotenv
from pydantic_settings import BaseSettings
from pydantic import Field

# Load local .env for development
load_dotenv(dotenv_path=Path(__file__).parent.parent / ".env")


class Settings(BaseSettings):
    # ─── Planning Center ───────────────────────────────────────────────────────
    # Personal access token pair (HTTP basic auth)
    PLANNING_CENTER_APP_ID: str = ""
    PLANNING_CENTER_SECRET: str = ""
    PLANNING_CENTER_BASE_URL: str = "https://api.planningcenteronline.com"

    # Group type whose groups make up the weekly report
    PCO_GROUP_TYPE_ID: int = 429361
    # Tag id that marks a group as a Family Group
    FAMILY_GROUP_TAG_ID: str = "1252160"

    # Workflow category holding the Dream Team rosters, and workflows in it that aren't teams
    DREAM_TEAM_CATEGORY_ID: str = "11927"
    DREAM_TEAM_EXCLUDED_WORKFLOW_IDS: str = "568000,610176"

    # ─── Upstream retry / pacing ───────────────────────────────────────────────
    PCO_MAX_RETRIES: int = Field(default=8, ge=0)
    PCO_BASE_DELAY_SECONDS: float = 3.0
    PCO_PAGE_DELAY_SECONDS: float = 0.1
    PCO_TIMEOUT_SECONDS: float = 30.0
    GROUP_REFRESH_DELAY_SECONDS: float = 1.0
    EVENT_FETCH_CONCURRENCY: int = Field(default=4, ge=1)

    # ─── Caches ────────────────────────────────────────────────────────────────
    DATABASE_URL: str = "sqlite:///./attendance_cache.db"
    CACHE_TTL_SECONDS: float = 3600.0
    CACHE_RETENTION_DAYS: int = 30
    CACHE_SWEEP_INTERVAL_HOURS: float = 24.0

    # ─── Aggregate endpoint ────────────────────────────────────────────────────
    AGGREGATE_TIMEOUT_SECONDS: float = 120.0
    AGGREGATE_HISTORY_TIMEOUT_SECONDS: float = 300.0

    # ─── Membership snapshots ──────────────────────────────────────────────────
    SNAPSHOT_LOOKBACK_DAYS: int = 7

    @property
    def dream_team_excluded_ids(self) -> frozenset:
        return frozenset(x.strip() for x in self.DREAM_TEAM_EXCLUDED_WORKFLOW_IDS.split(",") if x.strip())

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


# single settings instance for the whole app
settings = Settings()
