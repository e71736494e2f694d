import asyncio

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.metrics.export import InMemoryMetricReader

from webapp.main import create_app
from webapp.shared.config import Settings
from webapp.shared.metrics import observe, setup_metrics


def test_observe_passes_result_through():
    @observe("db", "lookup")
    def lookup(x, y=1):
        return x + y

    assert lookup(1, y=2) == 3
    assert lookup.__name__ == "lookup"


def test_observe_reraises():
    @observe("s3", "put")
    def put():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        put()


def test_observe_async():
    @observe("db", "async_lookup")
    async def lookup():
        return "ok"

    @observe("db", "async_fail")
    async def fail():
        raise ValueError("nope")

    assert asyncio.run(lookup()) == "ok"
    with pytest.raises(ValueError):
        asyncio.run(fail())


def _points(reader):
    points = {}
    for resource_metrics in reader.get_metrics_data().resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                points.setdefault(metric.name, []).extend(metric.data.data_points)
    return points


@pytest.fixture
def reader():
    return InMemoryMetricReader()


@pytest.fixture
def metered_client(settings, database, store, reader):
    app = create_app(settings, database, store, metric_readers=[reader])
    with TestClient(app) as c:
        yield c


def test_setup_metrics_disabled_without_endpoint():
    assert setup_metrics(Settings(ENV="test", OTEL_EXPORTER_OTLP_ENDPOINT=None)) is None


def test_requests_and_store_calls_are_recorded(metered_client, reader):
    assert metered_client.get("/healthz").status_code == 200
    points = _points(reader)

    requests = points["webapp.api.requests"]
    assert any(p.attributes["route"] == "/healthz" and p.value == 1 for p in requests)
    assert "webapp.api.duration" in points
    db_ops = points["webapp.db.operation.duration"]
    assert any(p.attributes["operation"] == "health_check_insert" for p in db_ops)


def test_unmatched_paths_share_one_route_label(metered_client, reader):
    metered_client.get("/v2/a")
    metered_client.get("/v2/b")
    routes = {p.attributes["route"] for p in _points(reader)["webapp.api.requests"]}
    assert routes == {"unmatched"}
