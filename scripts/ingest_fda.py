import os
import re
import ssl
import time
import json
import hashlib
import logging
from dataclasses import dataclass, field
from urllib.parse import quote

import requests
from dateutil import parser
from config import (
    FDA_ENFORCEMENT_ENDPOINTS,
    RECALL_TYPES,
    REPORT_DATE_START,
    REPORT_DATE_END,
    API_KEY_ENV,
    MAX_RECORDS_PER_SOURCE,
    LIMIT_PER_REQUEST,
    RETRY_MAX_RECORDS,
    RETRY_LIMIT_PER_REQUEST,
    REQUEST_TIMEOUT,
    FETCH_ATTEMPTS,
    BACKOFF_BASE_SECONDS,
    PAGE_DELAY_SECONDS,
    ENDPOINT_DELAY_SECONDS,
    DEFAULT_COUNTRY,
    LOG_DIR
)

os.makedirs(LOG_DIR, exist_ok=True)

logging.basicConfig(
    filename=os.path.join(LOG_DIR, "ingest.log"),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)

SNIPPET_LIMIT = 500

# Substrings that mark a recorded failure as a hard network problem
NETWORK_ERROR_MARKERS = (
    "ECONNREFUSED",
    "ETIMEDOUT",
    "ENOTFOUND",
    "Connection refused",
    "timed out",
    "Name or service not known",
    "Failed to resolve",
    "socket",
    "SSL",
    "TLS",
)

# requests wraps most socket failures in its own ConnectionError/Timeout
# (SSLError included); the builtins cover sessions that do not. OSError
# itself is too broad, every requests exception is one.
NETWORK_EXCEPTIONS = (
    requests.ConnectionError,
    requests.Timeout,
    ConnectionError,
    TimeoutError,
    ssl.SSLError,
)

FETCH_ERRORS = (requests.RequestException, OSError, ValueError)

API_KEY_PATTERN = re.compile(r"""api_key=[^&\s'"]+""")


@dataclass
class FetchError:
    endpoint: str
    reason: str
    network: bool = False

    def to_dict(self) -> dict:
        return {"endpoint": self.endpoint, "reason": self.reason}


@dataclass
class RecallFetchResult:
    """Unified records plus whatever went wrong getting them.

    `failed` is only set when both endpoints came back empty and the
    fallback retry did not recover anything.
    """
    results: list = field(default_factory=list)
    errors: list = field(default_factory=list)
    retried: bool = False
    failed: bool = False

    @property
    def count(self) -> int:
        return len(self.results)

    def to_payload(self) -> dict:
        payload = {"count": self.count, "results": self.results}
        if self.errors:
            payload["errors"] = [e.to_dict() for e in self.errors]
        if self.retried:
            payload["retried"] = True
        return payload


def search_url(source: str) -> str:
    endpoint = FDA_ENFORCEMENT_ENDPOINTS[source]
    return f"{endpoint}?search=report_date:[{REPORT_DATE_START}+TO+{REPORT_DATE_END}]"


def connectivity_url() -> str:
    return f"{FDA_ENFORCEMENT_ENDPOINTS['food']}?limit=1"


def with_api_key(url: str, api_key: str | None = None) -> str:
    # openFDA wants the key ahead of the other query params
    if api_key is None:
        api_key = os.getenv(API_KEY_ENV)
    if not api_key or "api_key=" in url:
        return url
    token = f"api_key={quote(api_key, safe='')}"
    if "?" in url:
        return url.replace("?", f"?{token}&", 1)
    return f"{url}?{token}"


def redact_api_key(text) -> str:
    """Mask the api_key query value; requests echoes full URLs in errors."""
    return API_KEY_PATTERN.sub("api_key=***", str(text))


def _snippet(text: str) -> str:
    if text and len(text) > SNIPPET_LIMIT:
        return text[:SNIPPET_LIMIT] + "..."
    return text or ""


def fetch_openfda(url: str, attempts: int = FETCH_ATTEMPTS, session=None) -> dict:
    """GET an openFDA URL and decode the JSON body, retrying with backoff.

    Non-2xx responses, transport errors and undecodable bodies all count as
    a failed attempt. The error from the last attempt is re-raised.
    """
    http = session or requests
    url = with_api_key(url)
    attempts = attempts or FETCH_ATTEMPTS

    for attempt in range(1, attempts + 1):
        try:
            resp = http.get(url, timeout=REQUEST_TIMEOUT)
            if resp.status_code >= 400:
                raise requests.HTTPError(
                    f"HTTP {resp.status_code}: {_snippet(resp.text)}", response=resp
                )
            data = resp.json()
            logging.info(f"fetch_openfda attempt {attempt}/{attempts} succeeded")
            return data
        except FETCH_ERRORS as e:
            logging.error(f"fetch_openfda attempt {attempt}/{attempts} error: {redact_api_key(e)}")
            if attempt == attempts:
                raise
            backoff = BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
            logging.warning(f"Retrying in {backoff:.1f}s...")
            time.sleep(backoff)


def fetch_all_openfda(base_url: str, max_records: int = 1000, page_size: int = 100, session=None) -> list:
    # openFDA caps `limit` per request, so page with skip and stitch the
    # pages together. Errors bubble up so the caller can record them.
    aggregated = []
    skip = 0
    while len(aggregated) < max_records:
        take = min(page_size, max_records - len(aggregated))
        url = f"{base_url}&limit={take}&skip={skip}"
        data = fetch_openfda(url, session=session)
        page = data.get("results") if isinstance(data, dict) else None
        if not isinstance(page, list) or not page:
            break
        aggregated.extend(page)
        if len(page) < take:
            break
        skip += len(page)
        time.sleep(PAGE_DELAY_SECONDS)
    logging.info(f"Aggregated {len(aggregated)} records from {base_url}")
    return aggregated


def parse_report_date(value) -> str | None:
    """openFDA report_date (YYYYMMDD) -> ISO timestamp at UTC midnight."""
    if value is None:
        return None
    s = str(value)
    if len(s) != 8 or not s.isdigit():
        return None
    try:
        dt = parser.isoparse(s)
    except ValueError:
        return None
    return dt.strftime("%Y-%m-%dT00:00:00.000Z")


def _fallback_id(recall_type: str, fields: dict) -> str:
    digest = hashlib.sha1(json.dumps(fields, sort_keys=True, default=str).encode("utf-8")).hexdigest()
    return f"{recall_type}_{digest[:7]}"


def normalize_record(item: dict, recall_type: str) -> dict:
    if recall_type not in RECALL_TYPES.values():
        raise ValueError(f"Unknown recall type: {recall_type!r}")
    r = item if isinstance(item, dict) else {}

    def pick(*keys):
        for k in keys:
            v = r.get(k)
            if v not in (None, ""):
                return v
        return None

    record = {
        "type": recall_type,
        "report_date": parse_report_date(r.get("report_date")),
        "raw_report_date": pick("report_date"),
        "classification": pick("classification"),
        "product_description": pick("product_description", "product_type"),
        "recalling_firm": pick("recalling_firm"),
        "reason_for_recall": pick("reason_for_recall"),
        "product_quantity": pick("product_quantity"),
        "address_1": pick("address_1", "distribution_pattern"),
        "city": pick("city"),
        "state": pick("state"),
        "country": pick("country") or DEFAULT_COUNTRY,
    }
    rid = pick("serial_number", "recall_number")
    if rid is None:
        rid = _fallback_id(recall_type, record)
    return {"id": str(rid), **record, "original": item}


def is_network_error(error) -> bool:
    if isinstance(error, FetchError):
        if error.network:
            return True
        reason = error.reason
    elif isinstance(error, NETWORK_EXCEPTIONS):
        return True
    else:
        reason = str(error)
    return any(marker in (reason or "") for marker in NETWORK_ERROR_MARKERS)


def _fetch_source(source: str, max_records: int, page_size: int, errors: list, session=None) -> list:
    try:
        return fetch_all_openfda(search_url(source), max_records, page_size, session=session)
    except FETCH_ERRORS as e:
        reason = redact_api_key(e)
        errors.append(FetchError(source, reason, network=isinstance(e, NETWORK_EXCEPTIONS)))
        logging.warning(f"{source.capitalize()} endpoint fetch failed: {reason}")
        return []


def _unify(food: list, drug: list) -> list:
    return [normalize_record(r, RECALL_TYPES["food"]) for r in food] + [
        normalize_record(r, RECALL_TYPES["drug"]) for r in drug
    ]


def fetch_recalls(session=None) -> RecallFetchResult:
    """Pull food then drug enforcement records and unify them.

    Endpoints are fetched one after the other, never in parallel. A failure
    on one endpoint is recorded and the other is still attempted.
    """
    errors = []
    food = _fetch_source("food", MAX_RECORDS_PER_SOURCE, LIMIT_PER_REQUEST, errors, session)
    time.sleep(ENDPOINT_DELAY_SECONDS)
    drug = _fetch_source("drug", MAX_RECORDS_PER_SOURCE, LIMIT_PER_REQUEST, errors, session)

    if food or drug:
        return RecallFetchResult(results=_unify(food, drug), errors=errors)

    logging.error(f"Both openFDA endpoints returned empty/failed: {[e.to_dict() for e in errors]}")
    if any(is_network_error(e) for e in errors):
        logging.warning("Network error detected; unable to fetch from openFDA.")
        return RecallFetchResult(errors=errors, failed=True)

    logging.warning("Attempting one more retry with connectivity check...")
    try:
        fetch_openfda(connectivity_url(), attempts=1, session=session)
    except FETCH_ERRORS as e:
        logging.warning(f"Connectivity test failed: {redact_api_key(e)}")
        return RecallFetchResult(errors=errors, failed=True)

    logging.warning("openFDA reachable, retrying endpoints once more.")
    retry_errors = []
    food = _fetch_source("food", RETRY_MAX_RECORDS, RETRY_LIMIT_PER_REQUEST, retry_errors, session)
    drug = _fetch_source("drug", RETRY_MAX_RECORDS, RETRY_LIMIT_PER_REQUEST, retry_errors, session)
    if food or drug:
        unified = _unify(food, drug)
        logging.info(f"Retry succeeded: {len(unified)} results")
        return RecallFetchResult(results=unified, errors=errors, retried=True)

    logging.error("Both openFDA endpoints failed after retry.")
    return RecallFetchResult(errors=errors, failed=True)


if __name__ == "__main__":
    result = fetch_recalls()
    print(json.dumps({k: v for k, v in result.to_payload().items() if k != "results"}, indent=2))
    print(f"{result.count} records")
