# scheduler.py

import os
import time
import logging

import schedule
import requests
from dotenv import load_dotenv

# ─── Load .env & Config ──────────────────────────────────────────────────────
load_dotenv()

# Base URL for the FastAPI app (override via .env if needed)
BASE_URL = os.getenv("API_BASE_URL", "http://127.0.0.1:8000")
REFRESH_TIME = os.getenv("REFRESH_TIME", "02:00")

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


# ─── Generic API Caller ──────────────────────────────────────────────────────
def call_api(method: str, endpoint: str, label: str, timeout: int = 3600):
    """
    Calls BASE_URL + endpoint and logs success / failure.
    A full refresh walks every group one at a time, so the read timeout is long.
    """
    url = f"{BASE_URL}{endpoint}"
    try:
        resp = requests.request(method, url, timeout=(10, timeout))
        if resp.ok:
            logging.info(f"✅ {label} succeeded (status {resp.status_code}): {resp.text[:300]}")
        else:
            logging.warning(f"⚠️ {label} returned {resp.status_code}: {resp.text}")
    except requests.RequestException as e:
        logging.error(f"❌ Exception during {label}: {e}", exc_info=True)


# ─── Job Schedule Definitions ────────────────────────────────────────────────
# method, endpoint, label
JOBS = [
    ("POST", "/api/refresh", "Nightly group attendance refresh + roster snapshots"),
]


def schedule_jobs():
    for method, endpoint, label in JOBS:
        schedule.every().day.at(REFRESH_TIME).do(call_api, method, endpoint, label)
        logging.info(f"Scheduled '{label}' daily at {REFRESH_TIME}")


# ─── Entrypoint ─────────────────────────────────────────────────────────────
def main():
    schedule_jobs()
    logging.info("⏱ Scheduler started. Waiting for jobs…")
    while True:
        schedule.run_pending()
        time.sleep(60)  # wake up every minute and check


if __name__ == "__main__":
    main()
