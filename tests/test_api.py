"""Tests for the HTTP middleware and endpoints."""

import random
import time
from collections.abc import Iterator

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from shieldon_core.api.dependencies import VerdictDep
from shieldon_core.api.middleware import client_ip
from shieldon_core.core.config import FirewallConfig
from shieldon_core.core.errors import StorageUnavailableError
from shieldon_core.main import create_app
from shieldon_core.services.firewall import Firewall
from shieldon_core.storage import MemoryStorage

from conftest import FakeClock

QUIET_FILTERS = {
    "session": {"enable": False},
    "cookie": {"enable": False},
    "referer": {"enable": False},
}


class StaticCaptcha:
    def __init__(self, answer: bool) -> None:
        self.answer = answer

    def verify(self, form, remote_ip: str = "") -> bool:
        return self.answer


@pytest.fixture()
def wall_clock() -> FakeClock:
    """Clock near real time so the client's cookie jar keeps issued cookies."""
    return FakeClock(float(int(time.time())))


@pytest.fixture()
def web_storage(wall_clock) -> MemoryStorage:
    return MemoryStorage(clock=wall_clock)


def _firewall(storage, clock, captchas=None, **options) -> Firewall:
    options.setdefault("filters", QUIET_FILTERS)
    return Firewall(
        FirewallConfig.from_dict(options),
        storage,
        captchas=captchas,
        clock=clock,
        rng=random.Random(7),
    )


@pytest.fixture()
def app(web_storage, wall_clock) -> FastAPI:
    return create_app(_firewall(web_storage, wall_clock, captchas=[StaticCaptcha(True)]))


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client


def test_first_request_sets_identity_cookie(client) -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert len(client.cookies.get("_shieldon", "")) == 32


def test_burst_is_rate_limited(client, wall_clock) -> None:
    """Test the third request in one second gets a 429 with the verdict body."""
    statuses = [client.get("/").status_code for _ in range(3)]
    blocked = client.get("/")

    assert statuses == [200, 200, 429]
    assert blocked.status_code == 429
    body = blocked.json()
    assert body["action"] == "quota_exceeded"
    assert body["breached"][0] == {"signal": "frequency", "unit": "s", "count": 4, "ceiling": 2}
    assert body["streak"] == 2

    wall_clock.advance(1)
    assert client.get("/").status_code == 200


def test_health_is_exempt(client) -> None:
    for _ in range(5):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}
    assert "_shieldon" not in client.cookies


def test_system_firewall_returns_403(web_storage, wall_clock) -> None:
    firewall = _firewall(
        web_storage,
        wall_clock,
        events={"failed_attempts_in_a_row": {"system_firewall": {"enable": True, "buffer": 1}}},
    )
    with TestClient(create_app(firewall)) as client:
        responses = [client.get("/") for _ in range(3)]

    assert [r.status_code for r in responses] == [200, 200, 403]
    assert responses[-1].json()["action"] == "deny"


def test_captcha_clears_rate_limit(client) -> None:
    for _ in range(3):
        client.get("/")
    assert client.get("/").status_code == 429

    solved = client.post("/shieldon/captcha", json={"response": "token"})

    assert solved.status_code == 200
    assert solved.json() == {"solved": True}
    assert client.get("/").status_code == 200


def test_captcha_requires_identity(app) -> None:
    with TestClient(app) as client:
        response = client.post("/shieldon/captcha", json={"response": "token"})

    assert response.status_code == 400


def test_captcha_rejects_empty_answer(client) -> None:
    client.get("/")

    assert client.post("/shieldon/captcha", json={"response": ""}).status_code == 422


def test_storage_outage_returns_503(app, web_storage, mocker) -> None:
    mocker.patch.object(web_storage, "get", side_effect=StorageUnavailableError("down"))

    with TestClient(app) as client:
        response = client.get("/")

    assert response.status_code == 503


def test_verdict_is_available_to_routes(app, client) -> None:
    @app.get("/whoami")
    async def whoami(verdict: VerdictDep) -> dict[str, str | None]:
        return {"identity": verdict.identity if verdict else None}

    response = client.get("/whoami")

    assert response.json() == {"identity": client.cookies.get("_shieldon")}


def test_client_ip_prefers_configured_header() -> None:
    request = Request(
        {
            "type": "http",
            "headers": [(b"x-forwarded-for", b"198.51.100.1, 10.0.0.1")],
            "client": ("10.0.0.1", 4321),
        }
    )

    assert client_ip(request) == "10.0.0.1"
    assert client_ip(request, "X-Forwarded-For") == "198.51.100.1"
    assert client_ip(request, "CF-Connecting-IP") == "10.0.0.1"


@pytest.mark.asyncio
async def test_health_over_asgi_transport(app) -> None:
    """Verify the health endpoint through an async client."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/health")

    assert response.status_code == 200


def test_session_limit_answers_503_with_queue_position(web_storage, wall_clock) -> None:
    app = create_app(
        _firewall(
            web_storage,
            wall_clock,
            online_session_limit={"enable": True, "config": {"count": 1, "period": 300}},
        )
    )

    with TestClient(app) as first, TestClient(app) as second:
        assert first.get("/").status_code == 200
        wall_clock.advance(1)
        response = second.get("/")

    assert response.status_code == 503
    assert response.json()["action"] == "session_limit"
    assert response.json()["queue_position"] == 2
