from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from meeting_backend.middleware.middleware import MaxContentLengthMiddleware


def _app(max_content_length: int) -> FastAPI:
    app = FastAPI()
    app.add_middleware(MaxContentLengthMiddleware, max_content_length=max_content_length)

    @app.post("/echo")
    async def echo(request: Request):
        return {"received": len(await request.body())}

    return app


def test_oversized_request_is_rejected():
    client = TestClient(_app(max_content_length=16))

    resp = client.post("/echo", content=b"x" * 17)

    assert resp.status_code == 413
    assert resp.json() == {"status_code": 413, "detail": "Request payload too large"}


def test_request_within_limit_passes():
    client = TestClient(_app(max_content_length=16))

    resp = client.post("/echo", content=b"x" * 16)

    assert resp.status_code == 200
    assert resp.json() == {"received": 16}
