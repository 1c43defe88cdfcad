"""
RaceTracker — Server entry point.

Serves the race storage API for the race-day UI.
Usage:
    python server.py [--dev] [--port 8080]
    # or: uvicorn server:app --host 0.0.0.0 --port 8080 --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from racecore.database import get_connection, get_db_path, init_db, migrate_db
from raceapi.routes import router as api_router

logger = logging.getLogger("racetracker")

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables and apply column migrations."""
    conn = get_connection()
    try:
        init_db(conn)
        migrate_db(conn)
    finally:
        conn.close()
    logger.info("Database ready at %s", get_db_path())
    yield


app = FastAPI(title="RaceTracker", version=VERSION, lifespan=lifespan)

app.include_router(api_router, prefix="/api")


@app.get("/api/status")
async def status():
    return {"ok": True, "version": VERSION, "database": str(get_db_path())}


# ─── Main ────────────────────────────────────────────────────────────

PORT = 8080


def _parse_port(argv: list[str]) -> int:
    if "--port" in argv:
        idx = argv.index("--port")
        if idx + 1 < len(argv):
            return int(argv[idx + 1])
    return PORT


if __name__ == "__main__":
    import sys

    import uvicorn

    dev_mode = "--dev" in sys.argv
    port = _parse_port(sys.argv)

    print(f"RaceTracker server — http://localhost:{port}/api/status")
    uvicorn.run("server:app", host="0.0.0.0", port=port,
                reload=dev_mode, log_level="info" if dev_mode else "warning")
