import os
import tempfile
from datetime import date

# pinned before config/app are imported anywhere
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DATA_PROVIDER"] = "synthetic"
os.environ["SYNTHETIC_SEED"] = "42"
os.environ["TRAIN_ON_STARTUP"] = "true"
os.environ["TRAINING_WORKERS"] = "2"
os.environ["PERSIST_RESULTS"] = "true"
os.environ["MODEL_STATE_PATH"] = os.path.join(tempfile.mkdtemp(prefix="forecast-state-"), "ensemble_state.pkl")
os.environ["OPENWEATHER_API_KEY"] = ""
os.environ["TRENDS_API_URL"] = ""
os.environ["WORLD_BANK_ENABLED"] = "false"
os.environ["EXTERNAL_RETRY_BACKOFF_SECONDS"] = "0"

import numpy as np
import pytest
import requests

from db.data_provider import SyntheticDataProvider
from models.ensemble_model import WeightStore
from models.entities import Criticality, Product, SalesObservation, Vertical
from models.forecast_model import ForecastEngine
from models.training_model import ModelRegistry, retrain
from services.external_factors import ExternalFactorAdapter

HISTORY_END = date(2025, 6, 30)


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    """Routes GET calls to `handler(url, params)`; records every call."""

    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        result = self.handler(url, params)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture
def make_session():
    return FakeSession


@pytest.fixture
def make_response():
    return FakeResponse


@pytest.fixture
def rng():
    return np.random.default_rng(123)


@pytest.fixture
def steady_history():
    start = date(2025, 1, 1)
    return [
        SalesObservation(date=date.fromordinal(start.toordinal() + i), quantity=100.0, unit_price=10.0)
        for i in range(60)
    ]


@pytest.fixture
def industrial_product():
    return Product(id="IND-T1", vertical=Vertical.INDUSTRIAL, lead_time_days=7,
                   criticality=Criticality.STANDARD, unit_cost=10.0, unit_price=25.0)


@pytest.fixture(scope="session")
def synthetic_provider():
    return SyntheticDataProvider(seed=7, products_per_vertical=3, history_days=120, end=HISTORY_END)


@pytest.fixture
def offline_adapter():
    return ExternalFactorAdapter(sleep=lambda s: None)


@pytest.fixture(scope="session")
def trained_state(synthetic_provider):
    store = WeightStore()
    registry = ModelRegistry()
    report = retrain(synthetic_provider, store, registry, workers=2)
    return store, registry, report


@pytest.fixture
def engine(synthetic_provider, trained_state):
    store, registry, _ = trained_state
    return ForecastEngine(synthetic_provider, ExternalFactorAdapter(sleep=lambda s: None), store, registry)


@pytest.fixture(scope="session")
def flask_app():
    from app import app
    app.config.update(TESTING=True)
    return app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()
