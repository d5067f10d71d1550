import uuid

import pytest
from fastapi.testclient import TestClient

from stripe_dash.main import app, get_client_factory


@pytest.fixture
def client(fake_client_factory):
    app.dependency_overrides[get_client_factory] = lambda: fake_client_factory
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def uid():
    return f"stripe-{uuid.uuid4().hex[:8]}"


def test_list_metrics(client):
    response = client.get("/api/metrics")
    assert response.status_code == 200
    metrics = response.json()
    assert len(metrics) == 17
    assert metrics[0]["kind"] == "mrr"
    assert metrics[0]["label"] == "MRR"
    assert metrics[-1]["display"]["type"] == "table"


def test_read_metric_and_unknown_metric(client):
    assert client.get("/api/metrics/arr").json()["label"] == "ARR"
    response = client.get("/api/metrics/gross_margin")
    assert response.status_code == 404
    assert "gross_margin" in response.json()["detail"]


def test_default_query(client):
    assert client.get("/api/queries/default").json() == {"refId": "A", "queryType": "mrr"}


def test_new_datasource_is_unconfigured(client, uid):
    assert client.get(f"/api/datasources/{uid}").json() == {
        "jsonData": {},
        "secureJsonFields": {"apiKey": False},
    }


def test_save_and_test_without_key_fails(client, uid):
    response = client.post(
        f"/api/datasources/{uid}/health",
        json={"jsonData": {}, "secureJsonData": {"apiKey": ""}},
    )
    assert response.status_code == 400
    assert response.json()["status"] == "error"
    assert "API key is missing" in response.json()["message"]


def test_save_and_test_cannot_claim_an_unsaved_key(client, uid):
    response = client.post(
        f"/api/datasources/{uid}/health",
        json={"secureJsonFields": {"apiKey": True}},
    )
    assert response.status_code == 400
    assert response.json()["message"] == "API key is missing"


def test_saved_key_is_never_echoed(client, uid, fake_client_factory):
    response = client.put(
        f"/api/datasources/{uid}",
        json={"jsonData": {"note": "prod"}, "secureJsonData": {"apiKey": "sk_live_secret"}},
    )
    assert response.status_code == 200
    assert response.json() == {"jsonData": {"note": "prod"}, "secureJsonFields": {"apiKey": True}}
    assert "sk_live_secret" not in client.get(f"/api/datasources/{uid}").text

    # existing credential is reused by save & test
    health = client.post(f"/api/datasources/{uid}/health", json={"jsonData": {"note": "prod"}})
    assert health.status_code == 200
    assert health.json() == {"status": "ok", "message": "Connected to Stripe"}
    assert fake_client_factory.built[-1].api_key == "sk_live_secret"


def test_save_keeps_key_when_payload_has_no_new_value(client, uid):
    client.put(f"/api/datasources/{uid}", json={"secureJsonData": {"apiKey": "sk_test_1"}})
    response = client.put(f"/api/datasources/{uid}", json={"jsonData": {"note": "edited"}})
    assert response.json()["secureJsonFields"] == {"apiKey": True}


def test_reset_key_removes_stored_credential(client, uid):
    client.put(f"/api/datasources/{uid}", json={"secureJsonData": {"apiKey": "sk_test_1"}})
    response = client.post(f"/api/datasources/{uid}/reset-key")
    assert response.json()["secureJsonFields"] == {"apiKey": False}

    health = client.post(f"/api/datasources/{uid}/health")
    assert health.status_code == 400
    assert health.json()["message"] == "API key is missing"


def test_reset_pair_in_save_payload_removes_key(client, uid):
    client.put(f"/api/datasources/{uid}", json={"secureJsonData": {"apiKey": "sk_test_1"}})
    response = client.put(
        f"/api/datasources/{uid}",
        json={"secureJsonData": {"apiKey": ""}, "secureJsonFields": {"apiKey": False}},
    )
    assert response.json()["secureJsonFields"] == {"apiKey": False}


def test_save_and_test_with_new_key(client, uid, fake_client_factory):
    response = client.post(
        f"/api/datasources/{uid}/health",
        json={"secureJsonData": {"apiKey": "rk_test_restricted"}},
    )
    assert response.status_code == 200
    assert fake_client_factory.built[-1].api_key == "rk_test_restricted"
    assert client.get(f"/api/datasources/{uid}").json()["secureJsonFields"] == {"apiKey": True}


def test_run_queries(client, uid):
    client.put(f"/api/datasources/{uid}", json={"secureJsonData": {"apiKey": "sk_test_1"}})
    response = client.post(
        "/api/query",
        json={
            "queries": [
                {"refId": "A", "queryType": "mrr", "datasourceUid": uid},
                {"refId": "B", "queryType": "", "datasourceUid": uid},
                {"refId": "C", "queryType": "retired", "datasourceUid": uid},
            ]
        },
    )
    assert response.status_code == 200
    results = response.json()["results"]
    assert set(results) == {"A", "C"}
    assert results["A"]["frames"][0]["fields"][1] == {"name": "MRR", "values": [3000.0]}
    assert results["C"]["error"] == "unknown query type: retired"


def test_run_query_against_unconfigured_datasource(client, uid):
    response = client.post(
        "/api/query", json={"queries": [{"refId": "A", "queryType": "arr", "datasourceUid": uid}]}
    )
    assert response.json()["results"]["A"]["error"] == "API key is missing"


def test_bodyless_save_and_test_keeps_plain_settings(client, uid):
    client.put(
        f"/api/datasources/{uid}",
        json={"jsonData": {"note": "prod"}, "secureJsonData": {"apiKey": "sk_1"}},
    )
    health = client.post(f"/api/datasources/{uid}/health")
    assert health.json()["status"] == "ok"
    assert client.get(f"/api/datasources/{uid}").json() == {
        "jsonData": {"note": "prod"},
        "secureJsonFields": {"apiKey": True},
    }


def test_key_only_update_keeps_plain_settings(client, uid):
    client.put(f"/api/datasources/{uid}", json={"jsonData": {"note": "prod"}})
    response = client.put(f"/api/datasources/{uid}", json={"secureJsonData": {"apiKey": "sk_2"}})
    assert response.json()["jsonData"] == {"note": "prod"}

    cleared = client.put(f"/api/datasources/{uid}", json={"jsonData": {}})
    assert cleared.json()["jsonData"] == {}


def test_query_routed_by_nested_datasource_reference(client, uid):
    client.put(f"/api/datasources/{uid}", json={"secureJsonData": {"apiKey": "sk_test_1"}})
    response = client.post(
        "/api/query",
        json={
            "queries": [
                {"refId": "A", "queryType": "arr", "datasource": {"type": "stripe", "uid": uid}}
            ]
        },
    )
    assert response.json()["results"]["A"]["frames"][0]["fields"][1] == {
        "name": "ARR",
        "values": [36000.0],
    }
