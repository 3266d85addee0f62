# main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.config import settings
from app.routes import router as attendance_router
from app.services import build_services

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # caches, db tables and the PCO client exist before the first request
    app.state.services = await build_services(settings)
    try:
        yield
    finally:
        await app.state.services.aclose()


app = FastAPI(title="Group Attendance Analytics", version="1.0.0", lifespan=lifespan)


# Healthcheck
@app.get("/healthz")
def healthcheck():
    return {"ok": True}


# ── Routers ───────────────────────────────────────────────────────────────────
app.include_router(attendance_router)
