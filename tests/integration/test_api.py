"""
Integration tests for the HTTP API.

Runs the full FastAPI app (recorder, query service, file backend) in-process
through TestClient with a fixed clock.
"""

import pytest
from fastapi.testclient import TestClient

from tests.conftest import START_MS
from traffic_monitor.main import create_app

VALID_LOGIN = {"email": "user@example.com", "password": "K4sad@!"}
VALID_ORDER = {
    "items": [{"id": 1, "price": 19.99, "quantity": 2}],
    "shippingAddress": {"line1": "1 Main St"},
    "paymentMethod": "card",
}


@pytest.fixture
def client(settings, local_backend, clock):
    app = create_app(settings, backend=local_backend, clock=clock)
    with TestClient(app) as c:
        yield c


class TestRecordedEndpoints:
    def test_login_success_is_recorded(self, client):
        response = client.post(
            "/api/auth/login",
            json=VALID_LOGIN,
            headers={
                "cf-connecting-ip": "198.51.100.1",
                "x-real-ip": "10.0.0.2",
                "x-forwarded-for": "10.0.0.3, 10.0.0.4",
            },
        )

        assert response.status_code == 200
        assert response.json()["user"]["email"] == "user@example.com"
        assert "password" not in response.json()["user"]

        logs = client.get("/api/traffic").json()
        assert len(logs) == 1
        assert logs[0]["endpoint"] == "/api/auth/login"
        assert logs[0]["method"] == "POST"
        assert logs[0]["statusCode"] == 200
        assert logs[0]["ip"] == "198.51.100.1"
        assert logs[0]["realIp"] == "198.51.100.1"
        assert logs[0]["isBot"] is False

    @pytest.mark.parametrize(
        "body,status",
        [
            ({"email": "user@example.com"}, 400),
            ({"email": "user@example.com", "password": "wrong"}, 401),
        ],
    )
    def test_login_failures_are_recorded_with_status(self, client, body, status):
        response = client.post("/api/auth/login", json=body)

        assert response.status_code == status
        logs = client.get("/api/traffic").json()
        assert [log["statusCode"] for log in logs] == [status]

    def test_malformed_json_is_400(self, client):
        response = client.post(
            "/api/auth/login",
            content=b"{not json",
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 400
        assert client.get("/api/traffic").json()[0]["statusCode"] == 400

    def test_checkout(self, client):
        ok = client.post("/api/checkout", json=VALID_ORDER)
        missing = client.post("/api/checkout", json={"items": VALID_ORDER["items"]})

        assert ok.status_code == 200
        assert ok.json()["order"]["total"] == 39.98
        assert missing.status_code == 400
        assert missing.json()["message"] == "Shipping address is required"

    def test_bot_header_is_classified(self, client):
        client.post(
            "/api/auth/login",
            json=VALID_LOGIN,
            headers={"x-kasada-classification": "bad-bot"},
        )
        client.post("/api/auth/login", json=VALID_LOGIN)

        bots = client.get("/api/traffic", params={"isBot": "true"}).json()
        humans = client.get("/api/traffic", params={"isBot": "false"}).json()

        assert len(bots) == 1
        assert len(humans) == 1


class TestTrafficQueries:
    def test_filters_and_ordering(self, client, clock):
        client.post("/api/auth/login", json=VALID_LOGIN)
        clock.advance(1)
        client.post("/api/checkout", json=VALID_ORDER)
        clock.advance(1)
        client.post("/api/auth/login", json={})

        everything = client.get("/api/traffic").json()
        logins = client.get("/api/traffic", params={"endpoint": "/api/auth/login"}).json()
        newest = client.get("/api/traffic", params={"limit": 1}).json()
        since = client.get("/api/traffic", params={"since": START_MS}).json()

        assert [log["endpoint"] for log in everything] == [
            "/api/auth/login",
            "/api/checkout",
            "/api/auth/login",
        ]
        assert len(logins) == 2
        assert newest[0]["statusCode"] == 400
        assert len(since) == 2

    def test_time_window(self, client, clock):
        client.post("/api/auth/login", json=VALID_LOGIN)
        clock.advance(10 * 60 * 1000)
        client.post("/api/auth/login", json=VALID_LOGIN)

        recent = client.get("/api/traffic", params={"timeWindow": 5}).json()

        assert len(recent) == 1

    @pytest.mark.parametrize(
        "path,params",
        [
            ("/api/traffic", {"since": "abc"}),
            ("/api/traffic", {"limit": "0"}),
            ("/api/traffic", {"timeWindow": "-1"}),
            ("/api/traffic/incremental", {"since": "abc"}),
            ("/api/dashboard-data", {"windowMinutes": "0"}),
            ("/api/dashboard-data", {"intervalSeconds": "x"}),
            ("/api/dashboard-data", {"windowMinutes": "40000", "intervalSeconds": "1"}),
            ("/api/dashboard-data", {"intervalSeconds": "86400"}),
            ("/api/traffic/combined", {"timeWindow": "10000"}),
            ("/api/traffic", {"timeWindow": "100000"}),
        ],
    )
    def test_invalid_numeric_parameters_are_400(self, client, path, params):
        response = client.get(path, params=params)

        assert response.status_code == 400
        assert response.json()["message"].startswith("Invalid parameter")


class TestIncremental:
    def test_cursor_flow(self, client, clock):
        first = client.get("/api/traffic/incremental")
        assert first.status_code == 200
        assert first.headers["cache-control"] == "no-store"
        assert first.json() == {"logs": [], "latestTimestamp": START_MS}

        cursor = first.json()["latestTimestamp"]
        clock.advance(5)
        client.post("/api/auth/login", json=VALID_LOGIN)
        clock.advance(5)
        client.post("/api/checkout", json=VALID_ORDER)

        page = client.get("/api/traffic/incremental", params={"since": cursor}).json()
        assert [log["endpoint"] for log in page["logs"]] == [
            "/api/checkout",
            "/api/auth/login",
        ]
        assert page["latestTimestamp"] == START_MS + 10

        idle = client.get(
            "/api/traffic/incremental", params={"since": page["latestTimestamp"]}
        ).json()
        assert idle == {"logs": [], "latestTimestamp": START_MS + 10}


class TestDashboard:
    def test_counts_tracked_endpoints(self, client):
        client.post("/api/auth/login", json=VALID_LOGIN)
        client.post("/api/auth/login", json={})
        client.post("/api/checkout", json=VALID_ORDER)

        response = client.get(
            "/api/dashboard-data", params={"windowMinutes": 10, "intervalSeconds": 60}
        )

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        points = response.json()
        assert len(points) == 11
        assert [p["timestamp"] for p in points] == sorted(p["timestamp"] for p in points)
        assert all(p["timestamp"] % 60 == 0 for p in points)
        assert points[-1]["loginCount"] == 2
        assert points[-1]["checkoutCount"] == 1
        assert sum(p["loginCount"] for p in points[:-1]) == 0

    def test_combined(self, client):
        client.post("/api/auth/login", json=VALID_LOGIN)
        client.post("/api/checkout", json=VALID_ORDER)

        response = client.get("/api/traffic/combined")

        assert response.status_code == 200
        assert response.headers["cache-control"] == "max-age=4"
        body = response.json()
        assert len(body["login"]) == 1
        assert len(body["checkout"]) == 1
        assert len(body["recent"]) == 2
        assert sum(p["loginCount"] for p in body["chart"]) == 1
        assert body["timestamp"].startswith("2023-11-14T22:13:20")


class TestHealth:
    def test_reports_backend(self, client):
        client.post("/api/auth/login", json=VALID_LOGIN)

        body = client.get("/api/health").json()

        assert body == {
            "status": "ok",
            "backend": "file",
            "healthy": True,
            "stored_events": 1,
            "message": "Backend is operational",
        }
