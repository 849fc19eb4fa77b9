"""HTTP API for the recall map.

GET /api/recalls   unified food + drug recalls
GET /api/diagnose  openFDA reachability check
"""
import os
import time
import logging
import traceback
from functools import lru_cache

import requests
import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from config import DIAGNOSE_TIMEOUT, PORT, LOG_DIR
from ingest_fda import fetch_recalls, connectivity_url, redact_api_key

os.makedirs(LOG_DIR, exist_ok=True)

logging.basicConfig(
    filename=os.path.join(LOG_DIR, "server.log"),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)

app = FastAPI(
    title="Hazard Atlas Recall Tool",
    description="Unified openFDA food and drug recalls for the recall map",
    version="1.0.0",
)


@lru_cache
def get_session() -> requests.Session:
    """Shared HTTP session, created on first use and kept for the process."""
    return requests.Session()


@app.get("/api/recalls")
def get_recalls():
    try:
        result = fetch_recalls(session=get_session())
    except Exception as e:
        details = {"message": redact_api_key(e), "stack": redact_api_key(traceback.format_exc())}
        logging.error(f"Error fetching openFDA: {details['message']}\n{details['stack']}")
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to fetch recalls from openFDA", "details": details},
        )

    if result.failed:
        logging.error("Both openFDA endpoints failed. Returning error response.")
        return JSONResponse(
            status_code=502,
            content={
                "error": "Both openFDA endpoints failed",
                "details": [e.to_dict() for e in result.errors],
                "message": "Unable to fetch food and drug recall data. Please check network connectivity.",
            },
        )
    return result.to_payload()


@app.get("/api/diagnose")
def diagnose():
    # anonymous on purpose, no API key
    try:
        start = time.monotonic()
        resp = get_session().get(connectivity_url(), timeout=DIAGNOSE_TIMEOUT)
        elapsed = int((time.monotonic() - start) * 1000)
    except requests.RequestException as e:
        logging.error(f"Diagnose error: {e}")
        return JSONResponse(status_code=502, content={"ok": False, "error": str(e)})
    if not resp.ok:
        return JSONResponse(
            status_code=502,
            content={"ok": False, "status": resp.status_code, "statusText": resp.reason},
        )
    return {"ok": True, "elapsed_ms": elapsed, "info": "openFDA reachable (anonymous)"}


def main(port: int = PORT):
    logging.info(f"Hazard Atlas Recall Tool server running on http://localhost:{port}")
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
