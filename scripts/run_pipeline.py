#!/usr/bin/env python3
"""CLI runner for the Hazard Atlas recall pipeline.

Usage examples:

# run with Prefect orchestration (default)
python scripts/run_pipeline.py

# run sequentially without Prefect, reusing cached geocodes only
python scripts/run_pipeline.py --no-prefect --skip-geocode

# start the HTTP API instead
python scripts/run_pipeline.py --serve --port 3000
"""
import argparse
import sys
import logging
import os

# Make `from config import ...` and the sibling script imports work no matter
# which directory the runner is invoked from.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))

from config import PORT

logging.basicConfig(level=logging.INFO)

parser = argparse.ArgumentParser(description="Run the Hazard Atlas recall pipeline")
parser.add_argument("--no-prefect", action="store_true", help="Run sequentially without Prefect")
parser.add_argument("--skip-geocode", action="store_true", help="Do not geocode uncached addresses")
parser.add_argument("--serve", action="store_true", help="Start the HTTP API instead of the pipeline")
parser.add_argument("--port", type=int, default=PORT, help="Port for --serve")
args = parser.parse_args()

if args.serve:
    from serve_api import main
    main(port=args.port)
elif args.no_prefect:
    from ingest_fda import fetch_recalls
    from process_fda import store_snapshot
    from geocode import GeocodeCache, geocode_records
    from visualize_fda import plot_recall_map, plot_yearly_trend, plot_class_distribution

    logging.info("Running sequential pipeline")
    result = fetch_recalls()
    if result.failed:
        logging.error("Both openFDA endpoints failed: %s", [e.to_dict() for e in result.errors])
        sys.exit(1)
    store_snapshot(result.results)
    cache = GeocodeCache()
    if not args.skip_geocode:
        logging.info("Geocoding: %s", geocode_records(result.results, cache))
    plot_recall_map(result.results, cache)
    plot_yearly_trend()
    plot_class_distribution()
    logging.info("Sequential pipeline complete")
else:
    try:
        from pipeline_prefect import run_pipeline
    except Exception as e:
        logging.error("Failed to import Prefect-based pipeline: %s", e)
        logging.error("If you don't have Prefect available, re-run with --no-prefect")
        raise

    logging.info("Running Prefect flow")
    run_pipeline(geocode=not args.skip_geocode)
    logging.info("Prefect pipeline run complete")
