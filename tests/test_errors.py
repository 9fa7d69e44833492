"""Error bodies rendered for API callers."""

from fastapi import FastAPI
from fastapi.testclient import TestClient

from calistar.common.errors import (
    GarmentProcessingFailed,
    InvalidAmount,
    MissingField,
    RateLimited,
    install_error_handlers,
)


def test_error_body_shape():
    assert InvalidAmount(detail="amount=1").to_body() == {
        "error": "Valor mínimo é R$ 5,00",
        "code": "invalid_amount",
        "details": "amount=1",
    }
    assert MissingField("taxId").to_body()["field"] == "taxId"
    assert GarmentProcessingFailed("lower", "timeout").to_body()["slot"] == "lower"
    assert "retryAfter" not in RateLimited().to_body()


def test_handler_renders_status_and_retry_after():
    app = FastAPI()
    install_error_handlers(app)

    @app.get("/limited")
    def limited():
        raise RateLimited(retry_after=12)

    resp = TestClient(app).get("/limited")
    assert resp.status_code == 429
    assert resp.headers["Retry-After"] == "12"
    assert resp.json()["retryAfter"] == 12
