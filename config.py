# General project configuration
import os

from dotenv import load_dotenv

load_dotenv()

# openFDA enforcement endpoints (food first, then drug)
OPENFDA_BASE_URL = "https://api.fda.gov"
FDA_ENFORCEMENT_ENDPOINTS = {
	"food": "https://api.fda.gov/food/enforcement.json",
	"drug": "https://api.fda.gov/drug/enforcement.json",
}
RECALL_TYPES = {"food": "Food", "drug": "Drug"}

# Fixed report_date window
REPORT_DATE_START = "20200101"
REPORT_DATE_END = "20241231"

# API key is optional; read from the environment, never sent to clients
API_KEY_ENV = "OPENFDA_API_KEY"

# API paging
MAX_RECORDS_PER_SOURCE = 250      # cap per endpoint on the normal path
LIMIT_PER_REQUEST = 500
RETRY_MAX_RECORDS = 500           # larger budget for the one-off retry path
RETRY_LIMIT_PER_REQUEST = 50

# HTTP behaviour
REQUEST_TIMEOUT = 30              # seconds, connect and per-read
DIAGNOSE_TIMEOUT = 10
FETCH_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 0.7        # doubles per attempt
PAGE_DELAY_SECONDS = 0.2          # be nice to the API
ENDPOINT_DELAY_SECONDS = 0.25

# Geocoding (Nominatim)
GEOCODER_URL = "https://nominatim.openstreetmap.org/search"
GEOCODER_USER_AGENT = "Hazard-Atlas-RecallTool/1.0 (local)"
GEOCODE_INTERVAL_SECONDS = 1.1
GEOCACHE_KEY = "hazardatlas_geocache_v1"
DEFAULT_COUNTRY = "USA"

# Storage
DUCKDB_PATH = "data/recalls.duckdb"
GEOCACHE_DB_PATH = "data/geocache.duckdb"

# Server
PORT = int(os.getenv("PORT", "3000"))

# Prefect / logging
LOG_DIR = "logs"
PLOT_DIR = "plots"
