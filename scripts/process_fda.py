import os
import json
import logging
import duckdb
import pandas as pd
from config import DUCKDB_PATH, LOG_DIR

os.makedirs(LOG_DIR, exist_ok=True)

logging.basicConfig(
    filename=os.path.join(LOG_DIR, "process.log"),
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)

SNAPSHOT_COLUMNS = [
    "id",
    "type",
    "report_date",
    "raw_report_date",
    "classification",
    "product_description",
    "recalling_firm",
    "reason_for_recall",
    "product_quantity",
    "address_1",
    "city",
    "state",
    "country",
]

CREATE_SNAPSHOT_SQL = """
CREATE OR REPLACE TABLE recalls_unified AS
SELECT
  id,
  type,
  TRY_CAST(SUBSTR(report_date, 1, 10) AS DATE) AS report_dt,
  report_date,
  raw_report_date,
  classification,
  product_description,
  recalling_firm,
  reason_for_recall,
  product_quantity,
  address_1,
  city,
  state,
  country,
  original
FROM df;
"""

CREATE_VIEWS_SQL = """
CREATE OR REPLACE VIEW v_yearly_counts AS
SELECT
  type,
  EXTRACT(YEAR FROM report_dt) AS year,
  COUNT(*) AS recalls
FROM recalls_unified
WHERE report_dt IS NOT NULL
GROUP BY 1, 2
ORDER BY 2, 1;

CREATE OR REPLACE VIEW v_class_distribution AS
SELECT
  COALESCE(classification, 'N/A') AS classification,
  COUNT(*) AS recalls
FROM recalls_unified
GROUP BY 1
ORDER BY 1;
"""

# sort key -> (column, ascending). class_desc lists the most severe tier
# ("Class I") first, which is plain lexical ascending order.
SORTS = {
    "date_desc": ("report_date", False),
    "date_asc": ("report_date", True),
    "class_desc": ("classification", True),
    "class_asc": ("classification", False),
}


def _text(series: pd.Series) -> pd.Series:
    return series.where(series.notna(), "").astype(str)


def apply_filters(records: list, recall_type: str = "All", classification: str = "All",
                  search: str = "", sort: str = "date_desc", limit=45):
    """Filter, sort and cap the unified records for display.

    Returns `(visible, matched)` where `matched` is the count before the
    display cap is applied. The record dicts themselves are returned, not
    copies.
    """
    if not records:
        return [], 0

    df = pd.DataFrame(
        [{c: r.get(c) for c in ("type", "classification", "report_date",
                                "product_description", "recalling_firm")} for r in records]
    )
    mask = pd.Series(True, index=df.index)
    if recall_type != "All":
        mask &= df["type"] == recall_type
    if classification != "All":
        mask &= _text(df["classification"]).str.upper() == classification.upper()
    term = (search or "").strip().lower()
    if term:
        haystack = _text(df["product_description"]) + " " + _text(df["recalling_firm"])
        mask &= haystack.str.lower().str.contains(term, regex=False)
    df = df[mask]

    if sort in SORTS:
        column, ascending = SORTS[sort]
        key = _text(df[column])
        df = df.loc[key.sort_values(ascending=ascending, kind="stable").index]

    matched = len(df)
    if limit != "all" and limit is not None:
        df = df.head(int(limit))
    return [records[i] for i in df.index], matched


def classification_options(records: list) -> list:
    return sorted({r.get("classification") or "N/A" for r in records})


def store_snapshot(records: list, db_path: str = DUCKDB_PATH) -> int:
    """Replace the stored unified record set with `records` wholesale."""
    if os.path.dirname(db_path):
        os.makedirs(os.path.dirname(db_path), exist_ok=True)
    rows = [
        {c: (None if r.get(c) is None else str(r.get(c))) for c in SNAPSHOT_COLUMNS}
        for r in records
    ]
    df = pd.DataFrame(rows, columns=SNAPSHOT_COLUMNS, dtype="string")
    df["original"] = pd.Series(
        [json.dumps(r.get("original"), default=str) for r in records], dtype="string"
    )
    with duckdb.connect(db_path) as conn:
        conn.register("df", df)
        conn.execute(CREATE_SNAPSHOT_SQL)
        conn.execute(CREATE_VIEWS_SQL)
    logging.info(f"Snapshot stored: {len(df)} records in {db_path}")
    return len(df)


def load_snapshot(db_path: str = DUCKDB_PATH) -> list:
    with duckdb.connect(db_path) as conn:
        df = conn.execute(
            f"SELECT {', '.join(SNAPSHOT_COLUMNS)}, original FROM recalls_unified"
        ).df()
    df = df.astype(object).where(df.notna(), None)
    records = df.to_dict("records")
    for r in records:
        r["original"] = json.loads(r["original"]) if r["original"] else None
    return records


if __name__ == "__main__":
    records = load_snapshot()
    visible, matched = apply_filters(records)
    logging.info(f"{matched} recalls match the default filters, showing {len(visible)}")
    print(f"{matched} recalls, showing {len(visible)}")
