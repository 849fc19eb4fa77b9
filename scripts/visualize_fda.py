import os
import duckdb
import pandas as pd
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
from config import DUCKDB_PATH, PLOT_DIR
from geocode import construct_address

CLASS_COLORS = {
    "class-I": "#ff4d4d",
    "class-II": "#ffb84d",
    "class-III": "#3ddc84",
}
TYPE_MARKERS = {"Food": "o", "Drug": "s"}


def classification_class(label) -> str:
    if not label:
        return "class-III"
    c = str(label).upper()
    # longest token first, "III" contains "II" and "I"
    if "III" in c:
        return "class-III"
    if "II" in c:
        return "class-II"
    if "I" in c:
        return "class-I"
    return "class-III"


def marker_color_for_class(label) -> str:
    return CLASS_COLORS[classification_class(label)]


def record_coordinates(rec: dict, cache) -> tuple | None:
    if rec.get("lat") and rec.get("lon"):
        return float(rec["lat"]), float(rec["lon"])
    addr = construct_address(rec)
    if not addr:
        return None
    cached = cache.get(addr)
    if not cached:
        return None
    return cached["lat"], cached["lon"]


def plot_recall_map(records: list, cache, path: str | None = None) -> int:
    """Scatter the placeable records on a lon/lat plane, colored by class.

    Returns the number of markers drawn. Nothing is written when no record
    has coordinates yet.
    """
    points = []
    for rec in records:
        coords = record_coordinates(rec, cache)
        if coords is None:
            continue
        lat, lon = coords
        points.append((lon, lat, marker_color_for_class(rec.get("classification")), rec.get("type")))
    if not points:
        return 0

    path = path or os.path.join(PLOT_DIR, "recall_map.png")
    if os.path.dirname(path):
        os.makedirs(os.path.dirname(path), exist_ok=True)
    df = pd.DataFrame(points, columns=["lon", "lat", "color", "type"])

    plt.figure(figsize=(12, 7))
    for recall_type, group in df.groupby("type"):
        plt.scatter(
            group["lon"], group["lat"],
            c=group["color"].tolist(),
            marker=TYPE_MARKERS.get(recall_type, "o"),
            edgecolors="black", linewidths=0.4, s=40,
            label=str(recall_type),
        )
    plt.title("Recalls by Location")
    plt.xlabel("Longitude")
    plt.ylabel("Latitude")
    plt.legend(title="Type")
    plt.grid(True, linestyle="--", alpha=0.4)
    plt.tight_layout()
    plt.savefig(path)
    plt.close()
    return len(df)


def fetch_df(sql: str, db_path: str = DUCKDB_PATH) -> pd.DataFrame:
    with duckdb.connect(db_path) as conn:
        return conn.execute(sql).df()


def plot_yearly_trend(db_path: str = DUCKDB_PATH):
    df = fetch_df("SELECT * FROM v_yearly_counts", db_path)
    if df.empty:
        return
    df_pivot = df.pivot(index="year", columns="type", values="recalls").fillna(0).sort_index()
    plt.figure(figsize=(10, 6))
    for col in df_pivot.columns:
        plt.plot(df_pivot.index.astype(int), df_pivot[col], marker="o", label=str(col))
    plt.title("Food vs Drug Recalls by Year")
    plt.xlabel("Year")
    plt.ylabel("Number of Recalls")
    plt.legend(title="Type")
    plt.grid(True, linestyle="--", alpha=0.5)
    plt.tight_layout()
    os.makedirs(PLOT_DIR, exist_ok=True)
    plt.savefig(os.path.join(PLOT_DIR, "yearly_recalls.png"))
    plt.close()


def plot_class_distribution(db_path: str = DUCKDB_PATH):
    df = fetch_df("SELECT * FROM v_class_distribution", db_path)
    if df.empty:
        return
    plt.figure()
    plt.bar(df["classification"], df["recalls"],
            color=[marker_color_for_class(c) for c in df["classification"]])
    plt.title("Recall Class Distribution")
    plt.xlabel("Class")
    plt.ylabel("Recalls")
    plt.tight_layout()
    os.makedirs(PLOT_DIR, exist_ok=True)
    plt.savefig(os.path.join(PLOT_DIR, "class_distribution.png"))
    plt.close()


if __name__ == "__main__":
    plot_yearly_trend()
    plot_class_distribution()
