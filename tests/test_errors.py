import logging

from fastapi.testclient import TestClient


def test_unhandled_error_is_logged_with_traceback(app, caplog):
    async def explode():
        raise RuntimeError("kaboom")

    app.add_api_route("/api/explode", explode)

    with TestClient(app, raise_server_exceptions=False) as client:
        with caplog.at_level(logging.ERROR, logger="goldmarket.errors"):
            resp = client.get("/api/explode")

    assert resp.status_code == 500
    body = resp.json()
    assert body["code"] == "INTERNAL_ERROR"
    assert body["message"] == "Internal server error"

    record = next(r for r in caplog.records if r.getMessage() == "unhandled exception")
    assert record.exc_info is not None
    assert record.exc_info[0] is RuntimeError
    assert "kaboom" in caplog.text


def test_unknown_route_uses_envelope(client):
    resp = client.get("/api/nowhere")
    assert resp.status_code == 404
    assert resp.json()["success"] is False
    assert resp.json()["code"] == "NOT_FOUND"
