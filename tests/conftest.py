"""Shared fixtures: settings, an in-memory database and fake upstream APIs."""

import json

import httpx
import pytest
from sqlalchemy.pool import StaticPool

from calistar.common.config import Settings
from calistar.common.db import Base, make_session_factory
from calistar.services.checkout import models  # noqa: F401  (registers tables)

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 24
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 24


@pytest.fixture
def settings():
    return Settings(
        service_name="test",
        public_base_url="https://shop.test",
        pagou_api_url="https://pagou.test",
        pagou_secret_key="sk_test",
        fitroom_api_url="https://fitroom.test",
        fitroom_api_key="fr_test",
        tryon_poll_interval_seconds=2.0,
        tryon_poll_max_attempts=5,
        tryon_rate_limit_per_minute=2,
    )


@pytest.fixture
def session_factory():
    factory = make_session_factory(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(factory.kw["bind"])
    return factory


class FakePagou:
    """Scriptable stand-in for the PIX gateway, served through MockTransport."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.create_response = None
        self.create_error: Exception | None = None
        self.statuses: dict[str, object] = {}
        self.counter = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path == "/v1/pix":
            if self.create_error is not None:
                raise self.create_error
            if self.create_response is not None:
                return self.create_response
            self.counter += 1
            body = json.loads(request.content)
            return httpx.Response(
                201,
                json={
                    "id": f"pix_{self.counter}",
                    "amount": body["amount"],
                    "payload": {"payload_id": f"pl_{self.counter}", "data": "00020126PIXCODE", "image": "iVBORw0KGgo="},
                },
            )
        if request.method == "GET" and request.url.path.startswith("/v1/pix/"):
            payment_id = request.url.path.rsplit("/", 1)[-1]
            if payment_id not in self.statuses:
                return httpx.Response(404, json={"message": "not found"})
            return httpx.Response(200, json={"id": payment_id, "status": self.statuses[payment_id], "amount": 10.0})
        return httpx.Response(404)

    @property
    def create_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "POST"]


@pytest.fixture
def fake_pagou():
    return FakePagou()


class FakeFitRoom:
    """Try-on task API plus image hosting, served through MockTransport.

    `script` maps a task number (1-based) to the list of status bodies
    returned by successive reads; the last one repeats.
    """

    def __init__(self) -> None:
        self.images: dict[str, bytes] = {
            "https://cdn.test/top.jpg": JPEG_BYTES + b"top",
            "https://cdn.test/bottom.jpg": JPEG_BYTES + b"bottom",
            "https://cdn.test/dress.jpg": JPEG_BYTES + b"dress",
        }
        self.script: dict[int, list] = {}
        self.uploads: list[dict] = []
        self.reads: list[str] = []
        self.create_status = 200
        self.create_headers: dict[str, str] = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if url in self.images:
            return httpx.Response(200, content=self.images[url], headers={"content-type": "image/jpeg"})
        if url.startswith("https://results.test/"):
            return httpx.Response(200, content=PNG_BYTES + url.encode(), headers={"content-type": "image/png"})
        if request.method == "POST" and request.url.path == "/api/tryon/v2/tasks":
            if self.create_status != 200:
                return httpx.Response(self.create_status, json={"message": "nope"}, headers=self.create_headers)
            self.uploads.append({"api_key": request.headers.get("X-API-KEY"), "content": request.content})
            return httpx.Response(200, json={"task_id": f"task-{len(self.uploads)}"})
        if request.method == "GET" and request.url.path.startswith("/api/tryon/v2/tasks/"):
            task_id = request.url.path.rsplit("/", 1)[-1]
            self.reads.append(task_id)
            number = int(task_id.split("-")[1])
            script = self.script.get(number) or [self.completed(number)]
            index = sum(1 for r in self.reads if r == task_id) - 1
            body = script[min(index, len(script) - 1)]
            if isinstance(body, httpx.Response):
                return body
            if isinstance(body, Exception):
                raise body
            return httpx.Response(200, json=body)
        return httpx.Response(404)

    @staticmethod
    def completed(number: int) -> dict:
        return {"status": "COMPLETED", "progress": 100, "download_signed_url": f"https://results.test/{number}.png"}


@pytest.fixture
def fake_fitroom():
    return FakeFitRoom()


class SleepRecorder:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def sleeps():
    return SleepRecorder()


class FakeRedis:
    """Hash commands used by the token bucket."""

    def __init__(self) -> None:
        self.hashes: dict[str, dict] = {}

    def hmget(self, key, *fields):
        stored = self.hashes.get(key, {})
        return [stored.get(f) for f in fields]

    def hset(self, key, mapping):
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in mapping.items()})

    def expire(self, key, seconds):
        return True


@pytest.fixture
def fake_redis():
    return FakeRedis()
