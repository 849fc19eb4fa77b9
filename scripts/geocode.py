import os
import json
import time
import logging
import threading
from collections import deque

import duckdb
import requests
from config import (
    GEOCODER_URL,
    GEOCODER_USER_AGENT,
    GEOCODE_INTERVAL_SECONDS,
    GEOCACHE_KEY,
    GEOCACHE_DB_PATH,
    REQUEST_TIMEOUT,
    LOG_DIR
)

os.makedirs(LOG_DIR, exist_ok=True)

logging.basicConfig(
    filename=os.path.join(LOG_DIR, "geocode.log"),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)

CREATE_KV_SQL = """
CREATE TABLE IF NOT EXISTS kv_store (
    key   VARCHAR PRIMARY KEY,
    value VARCHAR
);
"""

ADDRESS_FIELDS = ("address_1", "city", "state", "country")


def construct_address(rec: dict) -> str:
    parts = [rec.get(f) for f in ADDRESS_FIELDS]
    return ", ".join(str(p) for p in parts if p)


class GeocodeCache:
    """Address -> {"lat", "lon"} (or None for a known miss).

    Held in memory and written through to a single JSON value in a DuckDB
    key/value table, so it survives restarts.
    """

    def __init__(self, db_path: str = GEOCACHE_DB_PATH, key: str = GEOCACHE_KEY):
        self.db_path = db_path
        self.key = key
        self._lock = threading.Lock()
        if os.path.dirname(db_path):
            os.makedirs(os.path.dirname(db_path), exist_ok=True)
        self._entries = self._load()

    def _load(self) -> dict:
        with duckdb.connect(self.db_path) as conn:
            conn.execute(CREATE_KV_SQL)
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", [self.key]).fetchone()
        if row is None or not row[0]:
            return {}
        try:
            data = json.loads(row[0])
        except json.JSONDecodeError as e:
            logging.warning(f"Geocode cache corrupt, starting empty: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self):
        payload = json.dumps(self._entries)
        with duckdb.connect(self.db_path) as conn:
            conn.execute(CREATE_KV_SQL)
            conn.execute("INSERT OR REPLACE INTO kv_store VALUES (?, ?)", [self.key, payload])

    def __contains__(self, address: str) -> bool:
        return address in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, address: str, default=None):
        return self._entries.get(address, default)

    def set(self, address: str, coords: dict | None):
        with self._lock:
            self._entries[address] = coords
            self._save()


def geocode_address(address: str, session=None) -> dict | None:
    http = session or requests
    resp = http.get(
        GEOCODER_URL,
        params={"format": "json", "q": address, "limit": 1},
        headers={"User-Agent": GEOCODER_USER_AGENT},
        timeout=REQUEST_TIMEOUT,
    )
    if resp.status_code >= 400:
        raise requests.HTTPError(f"Geocode failed {resp.status_code}", response=resp)
    data = resp.json()
    hit = data[0] if isinstance(data, list) and data else None
    if hit is None:
        return None
    return {"lat": float(hit["lat"]), "lon": float(hit["lon"])}


class GeocodeQueue:
    """Serializes geocoding lookups through one background worker.

    `enqueue` can be called from anywhere; callbacks run on the worker
    thread as `callback(coords, error)`. Only real network lookups are
    followed by the politeness interval, cache hits are delivered straight
    away.
    """

    def __init__(self, cache: GeocodeCache, interval: float = GEOCODE_INTERVAL_SECONDS, session=None):
        self.cache = cache
        self.interval = interval
        self.session = session
        self._pending = deque()
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def pending(self) -> int:
        return len(self._pending)

    def enqueue(self, address: str, callback):
        with self._lock:
            self._pending.append((address, callback))
            if self._running:
                return
            self._running = True
            self._idle.clear()
        threading.Thread(target=self._run, name="geocode-queue", daemon=True).start()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the queue has drained. False on timeout."""
        return self._idle.wait(timeout)

    def _run(self):
        while True:
            with self._lock:
                if not self._pending:
                    self._running = False
                    self._idle.set()
                    return
                address, callback = self._pending.popleft()
            try:
                looked_up = self._process(address, callback)
            except Exception:
                # keep draining; _running must only drop on the empty-queue path
                logging.exception(f"Geocode worker failed on {address!r}")
                looked_up = True
            if looked_up:
                time.sleep(self.interval)

    def _process(self, address: str, callback) -> bool:
        # Returns True when a network lookup was made
        looked_up = False
        try:
            if address in self.cache:
                coords = self.cache.get(address)
            else:
                looked_up = True
                coords = geocode_address(address, session=self.session)
                self.cache.set(address, coords)
                logging.info(f"Geocoded {address!r} -> {coords}")
        except Exception as e:
            # malformed hits (TypeError) and cache write failures land here too
            logging.warning(f"Geocode error for {address!r}: {e}")
            self._deliver(callback, None, e)
            return looked_up
        self._deliver(callback, coords, None)
        return looked_up

    def _deliver(self, callback, coords, error):
        if callback is None:
            return
        try:
            callback(coords, error)
        except Exception:
            logging.exception("Geocode callback raised")


def pending_addresses(records: list, cache) -> list:
    """Unique addresses of records with no coordinates and no cache entry."""
    ordered, seen = [], set()
    for rec in records:
        if rec.get("lat") and rec.get("lon"):
            continue
        addr = construct_address(rec)
        if addr and addr not in cache and addr not in seen:
            seen.add(addr)
            ordered.append(addr)
    return ordered


def geocode_records(records: list, cache: GeocodeCache, queue: GeocodeQueue | None = None) -> dict:
    """Queue every unresolved address and block until the queue drains."""
    queue = queue or GeocodeQueue(cache)
    outcome = {"resolved": 0, "missed": 0, "failed": 0}

    def done(coords, error):
        if error is not None:
            outcome["failed"] += 1
        elif coords is None:
            outcome["missed"] += 1
        else:
            outcome["resolved"] += 1

    for addr in pending_addresses(records, cache):
        queue.enqueue(addr, done)
    queue.wait()
    return outcome
