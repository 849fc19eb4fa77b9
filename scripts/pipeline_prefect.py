import os
import logging

# Require Prefect to run the orchestrated pipeline. If Prefect is not
# available or raises at import time, fail fast with a helpful message.
try:
    from prefect import flow, task, get_run_logger
except Exception as e:
    raise ImportError(
        "Prefect import failed. Install project dependencies (pip install -e .) "
        "and ensure a compatible Prefect/Pydantic combination is present. "
        f"Underlying error: {e}"
    )

from ingest_fda import fetch_recalls
from process_fda import store_snapshot
from geocode import GeocodeCache, geocode_records, pending_addresses
from visualize_fda import plot_recall_map, plot_yearly_trend, plot_class_distribution
from config import LOG_DIR

os.makedirs(LOG_DIR, exist_ok=True)
logging.basicConfig(
    filename=os.path.join(LOG_DIR, "pipeline.log"),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
)


@task
def task_fetch():
    logger = get_run_logger()
    logger.info("Fetching recalls from openFDA…")
    result = fetch_recalls()
    if result.failed:
        raise RuntimeError(f"Both openFDA endpoints failed: {[e.to_dict() for e in result.errors]}")
    for e in result.errors:
        logger.warning(f"{e.endpoint} endpoint failed: {e.reason}")
    logger.info(f"Fetched {result.count} recalls (retried={result.retried}).")
    return result.results


@task
def task_store(records: list):
    logger = get_run_logger()
    n = store_snapshot(records)
    logger.info(f"Stored {n} recalls.")


@task
def task_geocode(records: list):
    logger = get_run_logger()
    cache = GeocodeCache()
    logger.info(f"Geocoding {len(pending_addresses(records, cache))} locations…")
    outcome = geocode_records(records, cache)
    logger.info(f"Geocoding done: {outcome}")


@task
def task_visualize(records: list):
    logger = get_run_logger()
    logger.info("Generating plots…")
    markers = plot_recall_map(records, GeocodeCache())
    plot_yearly_trend()
    plot_class_distribution()
    logger.info(f"Plots saved ({markers} map markers).")


@flow(name="hazard-atlas-pipeline")
def run_pipeline(geocode: bool = True):
    """Fetch, store, geocode and plot the unified recalls.

    Arguments:
        geocode: resolve addresses that are not cached yet (slow, ~1 req/s).
    """
    records = task_fetch()
    task_store(records)
    if geocode:
        task_geocode(records)
    task_visualize(records)


if __name__ == "__main__":
    run_pipeline()
