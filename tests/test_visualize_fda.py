import os
import pytest

from geocode import GeocodeCache
from visualize_fda import classification_class, marker_color_for_class, record_coordinates, plot_recall_map


@pytest.mark.parametrize("label,expected", [
    ("Class I", "class-I"),
    ("Class II", "class-II"),
    ("class iii", "class-III"),
    (None, "class-III"),
    ("N/A", "class-III"),
])
def test_classification_class(label, expected):
    assert classification_class(label) == expected


def test_marker_colors_by_severity():
    assert marker_color_for_class("Class I") == "#ff4d4d"
    assert marker_color_for_class("Class II") == "#ffb84d"
    assert marker_color_for_class("Class III") == "#3ddc84"


@pytest.fixture
def cache(tmp_path):
    c = GeocodeCache(db_path=str(tmp_path / "geocache.duckdb"))
    c.set("1 Main St, Springfield, IL, USA", {"lat": 39.78, "lon": -89.65})
    c.set("Nowhere, USA", None)
    return c


def test_record_coordinates(cache):
    assert record_coordinates({"lat": 1.5, "lon": 2.5}, cache) == (1.5, 2.5)
    rec = {"address_1": "1 Main St", "city": "Springfield", "state": "IL", "country": "USA"}
    assert record_coordinates(rec, cache) == (39.78, -89.65)
    assert record_coordinates({"address_1": "Nowhere", "country": "USA"}, cache) is None
    assert record_coordinates({"address_1": "Unseen", "country": "USA"}, cache) is None
    assert record_coordinates({}, cache) is None


def test_plot_recall_map_writes_file(cache, tmp_path):
    records = [
        {"type": "Food", "classification": "Class I", "address_1": "1 Main St", "city": "Springfield",
         "state": "IL", "country": "USA"},
        {"type": "Drug", "classification": "Class II", "lat": 40.7, "lon": -74.0},
        {"type": "Drug", "classification": "Class III", "address_1": "Unseen", "country": "USA"},
    ]
    path = str(tmp_path / "plots" / "map.png")
    assert plot_recall_map(records, cache, path) == 2
    assert os.path.exists(path)


def test_plot_recall_map_skips_when_nothing_placeable(cache, tmp_path):
    path = str(tmp_path / "map.png")
    assert plot_recall_map([{"type": "Food", "address_1": "Unseen"}], cache, path) == 0
    assert not os.path.exists(path)
