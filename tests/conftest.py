import pandas as pd
import pytest
from unittest.mock import MagicMock

from qaqc.services.anomalies import NO_NOTE, Decision


@pytest.fixture
def keep_reviewer():
    """Reviewer stub that keeps every flagged value."""
    reviewer = MagicMock()
    reviewer.decide.return_value = Decision.keep(NO_NOTE)
    return reviewer


@pytest.fixture
def make_site_frame():
    """Factory for a one-row site datasheet that passes every geo check."""
    def _make(**overrides):
        row = {
            "site": "SpCr04",
            "fire_scar": "Spruce Creek",
            "latitude_at_0m": 64.8123,
            "longitude_at_0m": -147.5012,
            "latitude_at_30m": 64.8125,
            "longitude_at_30m": -147.5015,
            "elevation": 350.0,
            "slope": 5.0,
            "aspect": 180.0,
            "transect_orientation": 90.0,
            "moisture_class": "mesic",
        }
        row.update(overrides)
        return pd.DataFrame([row])
    return _make


@pytest.fixture
def scenario_frame():
    """Ten plots with one obvious extreme high value."""
    return pd.DataFrame({
        "site": [f"SpCr{i:02d}" for i in range(1, 11)],
        "count": [1, 2, 2, 3, 3, 3, 4, 4, 5, 100],
    })
