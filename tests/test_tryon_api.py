"""Try-on HTTP contract, including legacy field names and rate limiting."""

import base64

import httpx
import pytest
from fastapi.testclient import TestClient

from calistar.common.ratelimit import TokenBucket
from calistar.services.tryon.api import create_app
from calistar.services.tryon.client import FitRoomClient
from calistar.services.tryon.pipeline import TryOnPipeline

PHOTO = "data:image/png;base64," + base64.b64encode(b"\x89PNG\r\n\x1a\n" + b"\x00" * 16).decode()


@pytest.fixture
def pipeline(settings, fake_fitroom, sleeps):
    client = FitRoomClient(settings, transport=httpx.MockTransport(fake_fitroom), service_name="test")
    return TryOnPipeline(client, settings, sleep=sleeps, service_name="test")


@pytest.fixture
def client(pipeline):
    return TestClient(create_app(pipeline, service_name="test"))


def test_legacy_field_names_and_category_alias(client, fake_fitroom):
    resp = client.post(
        "/api/virtual-try-on",
        json={
            "userPhotoBase64": PHOTO,
            "productImageUrl": "https://cdn.test/bottom.jpg",
            "productCategory": "calcinhas",
        },
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["resultImageUrl"] == "https://results.test/1.png"
    assert body["taskId"] == "task-1"
    assert body["steps"] == [{"slot": "lower", "taskId": "task-1", "resultImageUrl": "https://results.test/1.png"}]
    assert b'name="cloth_type"\r\n\r\nlower' in fake_fitroom.uploads[0]["content"]


def test_outfit_request(client):
    resp = client.post(
        "/api/virtual-try-on",
        json={
            "userPhotoBase64": PHOTO,
            "garments": [
                {"imageUrl": "https://cdn.test/bottom.jpg", "category": "calcinhas"},
                {"imageUrl": "https://cdn.test/top.jpg", "category": "tops"},
            ],
        },
    )
    assert resp.status_code == 200
    assert [step["slot"] for step in resp.json()["steps"]] == ["upper", "lower"]


def test_missing_photo_is_400(client, fake_fitroom):
    resp = client.post("/api/virtual-try-on", json={"garmentImageUrl": "https://cdn.test/top.jpg"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Foto do usuário e imagem do produto são obrigatórios"
    assert fake_fitroom.uploads == []


def test_missing_garment_is_400(client):
    resp = client.post("/api/virtual-try-on", json={"userPhotoBase64": PHOTO})
    assert resp.status_code == 400
    assert resp.json()["field"] == "garmentImageUrl"


def test_undecodable_photo_is_400(client, fake_fitroom):
    resp = client.post(
        "/api/virtual-try-on",
        json={"userPhotoBase64": "data:image/png;base64,@@@", "garmentImageUrl": "https://cdn.test/top.jpg"},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_image_data"
    assert fake_fitroom.uploads == []


def test_timeout_is_504(client, fake_fitroom):
    fake_fitroom.script[1] = [{"status": "PROCESSING"}]
    resp = client.post(
        "/api/virtual-try-on",
        json={"userPhotoBase64": PHOTO, "garmentImageUrl": "https://cdn.test/top.jpg", "garmentCategory": "tops"},
    )
    assert resp.status_code == 504
    assert resp.json()["slot"] == "upper"


def test_rate_limit_is_429_with_retry_after(pipeline, fake_redis):
    limiter = TokenBucket(fake_redis, limit_per_minute=2, prefix="tryon")
    client = TestClient(create_app(pipeline, limiter=limiter, service_name="test"))
    body = {"userPhotoBase64": PHOTO, "garmentImageUrl": "https://cdn.test/top.jpg"}
    assert client.post("/api/virtual-try-on", json=body).status_code == 200
    assert client.post("/api/virtual-try-on", json=body).status_code == 200
    resp = client.post("/api/virtual-try-on", json=body)
    assert resp.status_code == 429
    assert resp.json()["code"] == "rate_limited"
    assert int(resp.headers["Retry-After"]) >= 1


def test_upstream_credit_exhaustion_is_402(client, fake_fitroom):
    fake_fitroom.create_status = 402
    resp = client.post(
        "/api/virtual-try-on", json={"userPhotoBase64": PHOTO, "garmentImageUrl": "https://cdn.test/top.jpg"}
    )
    assert resp.status_code == 402
    assert resp.json()["code"] == "insufficient_credits"


def test_failed_outfit_step_reports_its_slot(client, fake_fitroom):
    fake_fitroom.script[1] = [
        {"status": "COMPLETED", "progress": 100, "download_signed_url": "https://expired.test/1.png"}
    ]
    resp = client.post(
        "/api/virtual-try-on",
        json={
            "userPhotoBase64": PHOTO,
            "garments": [
                {"imageUrl": "https://cdn.test/top.jpg", "category": "tops"},
                {"imageUrl": "https://cdn.test/bottom.jpg", "category": "calcinhas"},
            ],
        },
    )
    assert resp.status_code == 502
    assert resp.json()["code"] == "garment_processing_failed"
    assert resp.json()["slot"] == "upper"
