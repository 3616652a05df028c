from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from CollectIQ_core.bootstrap import build_services
from CollectIQ_core.config.settings import ExtractionSettings
from CollectIQ_core.gateway.app import SUBMISSIONS_PATH, create_app

BODY = {"cardId": "card-1", "imageRef": "s3://cards/charizard.jpg"}


@pytest.fixture()
def client(build_core):
    core = build_core()
    with TestClient(create_app(core)) as test_client:
        yield test_client


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_submission_is_accepted_then_deduplicated(client) -> None:
    first = client.post(SUBMISSIONS_PATH, json=BODY, headers={"Idempotency-Key": "key-1"})
    assert first.status_code == 202
    payload = first.json()
    assert payload["accepted"] is True
    assert payload["cardId"] == "card-1"
    assert payload["executionId"].startswith("exec-")

    second = client.post(SUBMISSIONS_PATH, json=BODY, headers={"Idempotency-Key": "key-1"})
    assert second.status_code == 200
    assert second.json() == {**payload, "accepted": False}


def test_key_may_come_from_body_or_alternate_header(client) -> None:
    in_body = client.post(SUBMISSIONS_PATH, json={**BODY, "idempotencyKey": "key-body"})
    assert in_body.status_code == 202
    alternate = client.post(
        SUBMISSIONS_PATH,
        json={**BODY, "cardId": "card-2"},
        headers={"X-Idempotency-Key": "key-alt"},
    )
    assert alternate.status_code == 202


def test_conflicting_reuse_returns_problem(client) -> None:
    client.post(SUBMISSIONS_PATH, json=BODY, headers={"Idempotency-Key": "key-1"})
    response = client.post(
        SUBMISSIONS_PATH,
        json={**BODY, "imageRef": "s3://cards/other.jpg"},
        headers={"Idempotency-Key": "key-1"},
    )
    assert response.status_code == 409
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["idempotency_key"] == "key-1"


def test_missing_key_is_invalid(client) -> None:
    response = client.post(SUBMISSIONS_PATH, json=BODY)
    assert response.status_code == 422
    assert response.json()["title"] == "Invalid submission"


def test_malformed_body_is_invalid(client) -> None:
    response = client.post(SUBMISSIONS_PATH, json={"cardId": "card-1"}, headers={"Idempotency-Key": "key-1"})
    assert response.status_code == 422
    assert response.headers["content-type"].startswith("application/problem+json")
    assert response.json()["errors"]


def test_metrics_endpoint_is_mounted(client) -> None:
    response = client.get("/metrics/")
    assert response.status_code == 200
    assert "collectiq_pricing_cache_entries" in response.text


def test_shutdown_closes_http_clients(settings) -> None:
    app_settings = settings.model_copy(
        update={"extraction": ExtractionSettings(base_url="https://vision.test")}
    )
    core = build_services(app_settings)
    with TestClient(create_app(core)) as test_client:
        assert test_client.get("/health").status_code == 200
        assert test_client.app.state.tracer_provider is None
    assert core.owned_adapters
    assert all(adapter.is_closed for adapter in core.owned_adapters)
