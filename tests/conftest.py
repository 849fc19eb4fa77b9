import pytest
from unittest.mock import MagicMock, patch


@pytest.fixture
def make_response():
    """Factory for fake `requests` responses."""
    def _make(status_code=200, payload=None, text=""):
        resp = MagicMock()
        resp.status_code = status_code
        resp.ok = status_code < 400
        resp.text = text
        if isinstance(payload, Exception):
            resp.json.side_effect = payload
        else:
            resp.json.return_value = payload
        return resp
    return _make


@pytest.fixture
def no_sleep():
    with patch("ingest_fda.time.sleep") as sleep:
        yield sleep


@pytest.fixture
def sample_records():
    return [
        {"id": "a", "type": "Food", "classification": "Class I", "report_date": "2021-01-01T00:00:00.000Z",
         "product_description": "Peanut butter", "recalling_firm": "Acme Foods"},
        {"id": "b", "type": "Drug", "classification": "Class II", "report_date": "2022-01-01T00:00:00.000Z",
         "product_description": "Ibuprofen tablets", "recalling_firm": "Pharma Co"},
        {"id": "c", "type": "Food", "classification": "Class III", "report_date": None,
         "product_description": "Frozen peas", "recalling_firm": "Green Valley"},
    ]
